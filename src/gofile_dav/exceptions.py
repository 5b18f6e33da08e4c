"""
gofile_dav/exceptions.py - Error taxonomy shared by the client, cache and adapter
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure classes surfaced to the WebDAV layer."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    INVALID = "invalid"
    CONFLICT = "conflict"


class GofileError(Exception):
    """Base exception for all gofile_dav errors."""


class ConfigError(GofileError):
    """Raised when the startup configuration cannot be used."""


class RemoteError(GofileError):
    """A failed remote operation, classified by kind."""

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"RemoteError({self.kind.name}, {self.message!r})"

    @classmethod
    def not_found(cls, message: str = "") -> "RemoteError":
        return cls(ErrorKind.NOT_FOUND, message)

    @classmethod
    def conflict(cls, message: str = "") -> "RemoteError":
        return cls(ErrorKind.CONFLICT, message)

    @classmethod
    def forbidden(cls, message: str = "") -> "RemoteError":
        return cls(ErrorKind.FORBIDDEN, message)

    @classmethod
    def invalid(cls, message: str = "") -> "RemoteError":
        return cls(ErrorKind.INVALID, message)

    @classmethod
    def transient(cls, message: str = "") -> "RemoteError":
        return cls(ErrorKind.TRANSIENT, message)


def is_kind(error: BaseException, kind: ErrorKind) -> bool:
    """Check whether an exception is a RemoteError of the given kind"""
    return isinstance(error, RemoteError) and error.kind == kind


def is_not_found(error: BaseException) -> bool:
    return is_kind(error, ErrorKind.NOT_FOUND)


def is_unauthorized(error: BaseException) -> bool:
    return is_kind(error, ErrorKind.UNAUTHORIZED)
