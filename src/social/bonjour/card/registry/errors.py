"""Typed failures raised by the registry, content store and pipeline.

Every failure carries a stable `code` in the `error-<area>-<number>` form so
callers can report the specific reason to the submitting user and the HTTP
layer can map it to a status without string matching.
"""

from typing import Any, Dict, Optional


class RegistryException(Exception):
    """Base class for every expected registry failure."""

    code: str = "error-registry-1999"
    status: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"{self.code} {message}")
        self.message = message
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class InvalidHandle(RegistryException):
    """The handle is empty, too long or outside the slug alphabet."""

    code = "error-handle-1000"
    status = 400


class HandleTaken(RegistryException):
    """The handle is already bound to a different identity."""

    code = "error-handle-1001"
    status = 409


class AlreadyClaimed(RegistryException):
    """The identity already owns a different handle."""

    code = "error-handle-1002"
    status = 409


class InvalidIdentity(RegistryException):
    code = "error-handle-1003"
    status = 400


class NotOwner(RegistryException):
    """A mutation was attempted by an identity that does not own the handle."""

    code = "error-profile-1100"
    status = 403


class ValidationError(RegistryException):
    """Profile fields failed their length or shape constraints."""

    code = "error-profile-1101"
    status = 400


class NotFound(RegistryException):
    """Unknown handle, content reference or version."""

    code = "error-registry-1200"
    status = 404


class TooLarge(RegistryException):
    code = "error-content-1300"
    status = 413


class EmptyInput(RegistryException):
    code = "error-content-1301"
    status = 400
