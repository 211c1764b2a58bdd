"""Custom exceptions for Rhizonote Sync.

Provides a structured exception hierarchy with error codes and
machine-readable error information. The hierarchy mirrors how the sync
engine treats remote failures:

- ``CredentialsMissingError`` aborts a run before any remote call.
- ``RemoteNotFoundError`` and ``RemoteConflictError`` are benign for the
  operations that tolerate them (delete, create-folder, move).
- ``TransientRequestError`` is caught per item and logged.
- ``SyncError`` is a total failure and propagates to the caller.
"""
from enum import Enum
from typing import Any, Dict, Optional

class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Credential errors (1xxx)
    CREDENTIALS_MISSING = 1001
    CREDENTIALS_REJECTED = 1002

    # Remote store errors (2xxx)
    REMOTE_NOT_FOUND = 2001
    REMOTE_CONFLICT = 2002
    REMOTE_REQUEST_FAILED = 2003
    REMOTE_LISTING_FAILED = 2004

    # Sync errors (3xxx)
    SYNC_FAILED = 3001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002


class RhizonoteError(Exception):
    """Base exception for all Rhizonote Sync errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SYNC_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"

class CredentialsMissingError(RhizonoteError):
    """Raised when no access or refresh token is available for the remote."""

    def __init__(self, message: str = "No remote credentials configured"):
        super().__init__(message, code=ErrorCode.CREDENTIALS_MISSING)

class RemoteError(RhizonoteError):
    """Base class for failures reported by a remote store operation."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.REMOTE_REQUEST_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error

class RemoteNotFoundError(RemoteError):
    """Raised when the remote path does not exist."""

    def __init__(self, path: str, operation: Optional[str] = None, **kwargs: Any):
        super().__init__(
            f"Remote path not found: {path}",
            operation=operation,
            path=path,
            code=ErrorCode.REMOTE_NOT_FOUND,
            **kwargs,
        )

class RemoteConflictError(RemoteError):
    """Raised when the remote destination already exists."""

    def __init__(self, path: str, operation: Optional[str] = None, **kwargs: Any):
        super().__init__(
            f"Remote path already exists: {path}",
            operation=operation,
            path=path,
            code=ErrorCode.REMOTE_CONFLICT,
            **kwargs,
        )

class TransientRequestError(RemoteError):
    """Raised for a single failed request that should be retried next run."""

class SyncError(RhizonoteError):
    """Raised when a sync run fails as a whole.

    A failed run discards no local data and leaves the dirty set and the
    pending queues untouched.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.SYNC_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error

class StorageError(RhizonoteError):
    """Raised for local sync-state persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error

