"""Exceptions raised by the admin services and their HTTP status codes."""

from typing import Optional


class AdminError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CollectionEmptyError(AdminError):
    """The queried collection holds no documents at all."""
    status_code = 404

    def __init__(self, collection: str, message: Optional[str] = None):
        super().__init__(
            message
            or f"No {collection} found. The collection might be empty or have a different name."
        )
        self.collection = collection


class RecordNotFoundError(AdminError):
    status_code = 404

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection} record {record_id} not found")
        self.collection = collection
        self.record_id = record_id


class StoreUnavailableError(AdminError):
    status_code = 503


class RecordValidationError(AdminError):
    """A stored document does not match its schema and defaults are disabled."""
    status_code = 422

    def __init__(self, collection: str, record_id: str, errors: list):
        fields = ", ".join(".".join(str(p) for p in e.get("loc", ())) for e in errors)
        super().__init__(f"{collection} record {record_id} is malformed: {fields}")
        self.collection = collection
        self.record_id = record_id
        self.errors = errors


class InvalidTransitionError(AdminError):
    status_code = 409

    def __init__(self, collection: str, current: str, new: str):
        super().__init__(f"Cannot move {collection} record from '{current}' to '{new}'")
        self.collection = collection
        self.current = current
        self.new = new


class MutationFailedError(AdminError):
    status_code = 502


class AuthenticationError(AdminError):
    status_code = 401


class NotAdminError(AdminError):
    status_code = 403


class IdentityProviderError(AdminError):
    status_code = 502


class AdminSetupClosedError(AdminError):
    """Raised when first-admin setup is attempted while admins already exist."""
    status_code = 409

    def __init__(self):
        super().__init__("Admin users already exist in the database.")
