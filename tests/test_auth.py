"""
Unit tests for admin authentication.
"""
import unittest
from unittest.mock import MagicMock

import mongomock
import requests

from auth import AdminDirectory, IdentityClient, authenticate, bearer_token, setup_first_admin
from errors import AdminSetupClosedError, AuthenticationError, IdentityProviderError, NotAdminError


def response(status_code, payload):
    r = MagicMock()
    r.status_code = status_code
    r.ok = status_code < 400
    r.json.return_value = payload
    return r


class TestIdentityClient(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.client = IdentityClient("https://identity.test/v1", "key-123", session=self.session)

    def test_sign_in(self):
        self.session.post.return_value = response(200, {"localId": "u1", "idToken": "tok"})

        account = self.client.sign_in("admin@example.com", "secret")

        self.assertEqual(account["localId"], "u1")
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://identity.test/v1/accounts:signInWithPassword")
        self.assertEqual(kwargs["params"], {"key": "key-123"})
        self.assertEqual(kwargs["json"]["email"], "admin@example.com")

    def test_rejected_credentials(self):
        self.session.post.return_value = response(400, {"error": {"message": "INVALID_PASSWORD"}})

        with self.assertRaises(AuthenticationError) as ctx:
            self.client.sign_in("admin@example.com", "wrong")
        self.assertEqual(ctx.exception.message, "INVALID_PASSWORD")

    def test_provider_unreachable(self):
        self.session.post.side_effect = requests.ConnectionError("connection refused")

        with self.assertRaises(IdentityProviderError):
            self.client.sign_in("admin@example.com", "secret")

    def test_lookup_without_users(self):
        self.session.post.return_value = response(200, {"users": []})

        with self.assertRaises(AuthenticationError):
            self.client.lookup("expired")


class TestAdminAccess(unittest.TestCase):

    def setUp(self):
        self.db = mongomock.MongoClient().quickcare
        self.admins = AdminDirectory(self.db)
        self.identity = MagicMock()

    def test_bearer_token(self):
        self.assertEqual(bearer_token("Bearer abc"), "abc")
        for header in (None, "", "Basic abc", "Bearer "):
            with self.assertRaises(AuthenticationError):
                bearer_token(header)

    def test_authenticate_admin(self):
        self.db.admins.insert_one({"email": "admin@example.com", "uid": "u1"})
        self.identity.lookup.return_value = {"localId": "u1", "email": "admin@example.com"}

        session = authenticate(self.identity, self.admins, "tok")

        self.assertEqual(session.uid, "u1")

    def test_admin_matched_by_email(self):
        self.db.admins.insert_one({"email": "admin@example.com"})
        self.identity.lookup.return_value = {"localId": "u1", "email": "admin@example.com"}

        self.assertEqual(authenticate(self.identity, self.admins, "tok").email, "admin@example.com")

    def test_non_admin_is_refused(self):
        self.identity.lookup.return_value = {"localId": "u2", "email": "driver@example.com"}

        with self.assertRaises(NotAdminError):
            authenticate(self.identity, self.admins, "tok")

    def test_first_admin_setup(self):
        self.identity.sign_up.return_value = {"localId": "u1"}

        admin = setup_first_admin(self.identity, self.admins, "admin@example.com", "secret")

        self.assertEqual(admin["uid"], "u1")
        stored = self.db.admins.find_one({"uid": "u1"})
        self.assertEqual(stored["email"], "admin@example.com")
        self.assertIn("createdAt", stored)
        self.assertTrue(self.admins.has_admins())

    def test_setup_reuses_existing_account(self):
        self.identity.sign_up.side_effect = AuthenticationError("EMAIL_EXISTS")
        self.identity.sign_in.return_value = {"localId": "u7"}

        admin = setup_first_admin(self.identity, self.admins, "admin@example.com", "secret")

        self.assertEqual(admin["uid"], "u7")

    def test_setup_closed_once_an_admin_exists(self):
        self.db.admins.insert_one({"email": "admin@example.com", "uid": "u1"})

        with self.assertRaises(AdminSetupClosedError):
            setup_first_admin(self.identity, self.admins, "other@example.com", "secret")
        self.identity.sign_up.assert_not_called()


if __name__ == "__main__":
    unittest.main()
