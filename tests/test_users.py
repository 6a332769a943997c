"""
Unit tests for the user detail view.
"""
import unittest
from datetime import datetime, timezone

import mongomock

from errors import RecordNotFoundError
from reader import CollectionReader
from users import load_user_detail, resolve_medical_info


class TestUserDetail(unittest.TestCase):

    def setUp(self):
        self.db = mongomock.MongoClient().quickcare
        self.reader = CollectionReader(self.db)

    def test_medical_info_from_profile_fields(self):
        self.db.user_profiles.insert_one({"_id": "u1", "fullName": "Jane", "bloodType": "O+"})

        detail = load_user_detail(self.reader, "u1")

        self.assertEqual(detail.medical_info.blood_type, "O+")
        self.assertEqual(detail.medical_info.allergies, "")

    def test_medical_info_embedded(self):
        self.db.user_profiles.insert_one({"_id": "u1", "medicalInfo": {"allergies": "Penicillin"}})

        info = resolve_medical_info(self.reader, self.reader.fetch_one("user_profiles", "u1"))

        self.assertEqual(info.allergies, "Penicillin")

    def test_medical_info_by_reference(self):
        self.db.medical_info.insert_one({"_id": "m1", "medications": "Insulin"})
        self.db.user_profiles.insert_one({"_id": "u1", "medicalInfoId": "m1"})

        info = resolve_medical_info(self.reader, self.reader.fetch_one("user_profiles", "u1"))

        self.assertEqual(info.id, "m1")
        self.assertEqual(info.medications, "Insulin")

    def test_dangling_reference_gives_no_medical_info(self):
        self.db.user_profiles.insert_one({"_id": "u1", "medicalInfoId": "missing"})

        info = resolve_medical_info(self.reader, self.reader.fetch_one("user_profiles", "u1"))

        self.assertIsNone(info)

    def test_trips_match_by_id_or_name(self):
        self.db.user_profiles.insert_one({"_id": "u1", "fullName": "Jane"})
        self.db.emergency_requests.insert_many([
            {"_id": "e1", "userId": "u1", "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc)},
            {"_id": "e2", "userName": "Jane", "createdAt": datetime(2024, 2, 1, tzinfo=timezone.utc)},
            {"_id": "e3", "user": "u1"},
            {"_id": "e4", "userId": "u2", "userName": "Other"},
        ])

        detail = load_user_detail(self.reader, "u1")

        self.assertEqual([t.id for t in detail.trips], ["e2", "e1", "e3"])

    def test_defaulted_name_does_not_match_trips(self):
        self.db.user_profiles.insert_one({"_id": "u1"})
        self.db.emergency_requests.insert_one({"_id": "e1"})

        detail = load_user_detail(self.reader, "u1")

        self.assertEqual(detail.user.full_name, "Unknown User")
        self.assertEqual(detail.trips, [])
        self.assertIsNone(detail.medical_info)

    def test_unknown_user(self):
        with self.assertRaises(RecordNotFoundError):
            load_user_detail(self.reader, "nobody")


if __name__ == "__main__":
    unittest.main()
