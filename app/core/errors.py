# app/core/errors.py
"""
Error taxonomy for the offline cache and sync layer.

Every error raised at the remote gateway boundary carries a ``kind``
discriminant so services can branch on it instead of inspecting messages.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Discriminant for error classification."""
    NETWORK = "network"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    SERVER = "server"
    LOCAL = "local"


class SyncError(Exception):
    """Base class for all errors raised by this package."""

    kind: ErrorKind = ErrorKind.LOCAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ===========================
# Remote API errors
# ===========================

class ApiError(SyncError):
    """Non-2xx response from the remote API (or any failure surfaced as one)."""

    def __init__(self, message: str, status: int = 0, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code
        if status == 404:
            self.kind = ErrorKind.NOT_FOUND
        else:
            self.kind = ErrorKind.SERVER

    @property
    def is_not_found(self) -> bool:
        """True when the server says the record is already gone."""
        if self.kind == ErrorKind.NOT_FOUND or self.status in (400, 404):
            return True
        return "not found" in (self.message or "").lower()

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "kind": self.kind.value,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, status={self.status}, code={self.code!r})"


class AuthExpiredError(ApiError):
    """Session is no longer valid. Never retried, never answered from cache."""

    def __init__(self, message: str = "Authentication expired. Please login again."):
        super().__init__(message, status=401, code="AUTH_EXPIRED")
        self.kind = ErrorKind.AUTH


class SessionRequiredError(ApiError):
    """A mutation was attempted without an authenticated session."""

    def __init__(self, message: str = "You must be logged in to perform this action."):
        super().__init__(message, status=401, code="NO_SESSION")
        self.kind = ErrorKind.AUTH


class NetworkError(ApiError):
    """Transport-level failure: the server could not be reached."""

    def __init__(self, message: str = "Network error. Please check your connection."):
        super().__init__(message, status=0, code="NETWORK_ERROR")
        self.kind = ErrorKind.NETWORK


class OfflineDataUnavailableError(SyncError):
    """Remote fetch failed and the local cache has nothing to offer."""


# ===========================
# Local store errors
# ===========================

class StoreError(SyncError):
    """Base class for local store failures."""


class NotFoundError(StoreError):
    """Update targeted a row that does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, table: str, entity_id: str):
        super().__init__(f"No row with id '{entity_id}' in {table}")
        self.table = table
        self.entity_id = entity_id


class ConstraintError(StoreError):
    """Insert violated a uniqueness (primary key) constraint."""

    def __init__(self, table: str, entity_id: Optional[str], detail: str = ""):
        message = f"Constraint violation inserting '{entity_id}' into {table}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.table = table
        self.entity_id = entity_id


class StoreNotReadyError(StoreError):
    """The store did not become ready within the configured wait."""


def is_network_error(error: BaseException) -> bool:
    return isinstance(error, SyncError) and error.kind == ErrorKind.NETWORK


def is_auth_error(error: BaseException) -> bool:
    return isinstance(error, SyncError) and error.kind == ErrorKind.AUTH
