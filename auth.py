"""
Admin authentication.

Credentials are checked by an external identity provider speaking the
identity-toolkit REST API. A signed-in account is an admin only if it is
listed in the ``admins`` collection.
"""

from typing import Any, Dict, Optional

import requests
import structlog
from fastapi import Header, Request
from pydantic import BaseModel
from pymongo.database import Database

from database import create_document
from errors import AdminSetupClosedError, AuthenticationError, IdentityProviderError, NotAdminError

logger = structlog.get_logger(__name__)


class AdminSession(BaseModel):
    uid: str
    email: Optional[str] = None


class IdentityClient:
    def __init__(self, base_url: str, api_key: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = self.session.post(
                f"{self.base_url}/accounts:{action}",
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise IdentityProviderError(f"Identity provider error: {str(e)[:120]}")
        if r.status_code == 400:
            try:
                reason = r.json().get("error", {}).get("message", "INVALID_CREDENTIALS")
            except ValueError:
                reason = "INVALID_CREDENTIALS"
            raise AuthenticationError(reason)
        if not r.ok:
            raise IdentityProviderError(f"Identity provider returned {r.status_code}")
        return r.json()

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        data = self._post("signInWithPassword", {"email": email, "password": password, "returnSecureToken": True})
        logger.info("Signed in with identity provider", email=email)
        return data

    def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        data = self._post("signUp", {"email": email, "password": password, "returnSecureToken": True})
        logger.info("Account created with identity provider", email=email)
        return data

    def lookup(self, id_token: str) -> Dict[str, Any]:
        data = self._post("lookup", {"idToken": id_token})
        users = data.get("users") or []
        if not users:
            raise AuthenticationError("Session invalid or expired")
        return users[0]


class AdminDirectory:
    def __init__(self, db: Database):
        self.db = db

    def is_admin(self, uid: Optional[str], email: Optional[str]) -> bool:
        clauses = []
        if uid:
            clauses.append({"uid": uid})
        if email:
            clauses.append({"email": email})
        if not clauses:
            return False
        return self.db["admins"].find_one({"$or": clauses}) is not None

    def has_admins(self) -> bool:
        return self.db["admins"].find_one({}) is not None

    def register(self, email: str, uid: str) -> str:
        admin_id = create_document(self.db, "admins", {"email": email, "uid": uid})
        logger.info("Admin registered", email=email, uid=uid)
        return admin_id


def setup_first_admin(identity: IdentityClient, admins: AdminDirectory, email: str, password: str) -> Dict[str, Any]:
    """Create the first admin account. Only allowed while no admin exists."""
    if admins.has_admins():
        raise AdminSetupClosedError()
    try:
        account = identity.sign_up(email, password)
    except AuthenticationError as exc:
        if exc.message != "EMAIL_EXISTS":
            raise
        account = identity.sign_in(email, password)
    admin_id = admins.register(email, account["localId"])
    return {"id": admin_id, "uid": account["localId"], "email": email}


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Not authenticated")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header")
    return token.strip()


def authenticate(identity: IdentityClient, admins: AdminDirectory, token: str) -> AdminSession:
    user = identity.lookup(token)
    uid, email = user.get("localId"), user.get("email")
    if not uid or not admins.is_admin(uid, email):
        logger.warning("Non-admin access attempt", uid=uid, email=email)
        raise NotAdminError("Admin access required")
    return AdminSession(uid=uid, email=email)


def require_admin(request: Request, authorization: Optional[str] = Header(None)) -> AdminSession:
    services = request.app.state.services
    return authenticate(services.identity, services.admins, bearer_token(authorization))
