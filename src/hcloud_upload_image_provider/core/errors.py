"""
Error taxonomy for the uploaded-image resource.

Every failure surfaced by the core is a `ProviderError` carrying an
`ErrorKind` so the calling control plane can branch on the kind without
string matching. The original cause is always chained (`raise ... from exc`)
and also kept on `.cause` for callers that serialize errors.

Kinds:
  - VALIDATION        missing/empty required input (caller-fixable)
  - UNSUPPORTED_VALUE unrecognized enum string (caller-fixable)
  - INVALID_IDENTITY  malformed external id (caller/state corruption)
  - NOT_FOUND         referenced remote object absent
  - REMOTE            transport/API failure (caller may retry)
  - UPLOAD            upload collaborator failure (not retried here)
  - CLEANUP           collaborator cleanup failure
  - CANCELLED         caller cancelled or deadline expired
"""

from __future__ import annotations

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    UNSUPPORTED_VALUE = "unsupported_value"
    INVALID_IDENTITY = "invalid_identity"
    NOT_FOUND = "not_found"
    REMOTE = "remote"
    UPLOAD = "upload"
    CLEANUP = "cleanup"
    CANCELLED = "cancelled"


class ProviderError(Exception):
    """Base class for all errors returned by the lifecycle operations."""

    kind: ErrorKind = ErrorKind.REMOTE

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "message": str(self)}


class ValidationError(ProviderError):
    kind = ErrorKind.VALIDATION


class UnsupportedValueError(ProviderError):
    """Raised when an enum-like input holds a value we cannot map."""

    kind = ErrorKind.UNSUPPORTED_VALUE

    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"unsupported {field}: {value!r}")
        self.field = field
        self.value = value


class InvalidIdentityError(ProviderError):
    kind = ErrorKind.INVALID_IDENTITY


class NotFoundError(ProviderError):
    kind = ErrorKind.NOT_FOUND


class RemoteError(ProviderError):
    kind = ErrorKind.REMOTE


class UploadError(ProviderError):
    kind = ErrorKind.UPLOAD


class CleanupError(ProviderError):
    kind = ErrorKind.CLEANUP


class OperationCancelled(ProviderError):
    kind = ErrorKind.CANCELLED
