"""Custom exceptions for notegraph.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_ID_REQUIRED = 1003
    NOTE_BODY_REQUIRED = 1004

    # Link errors (2xxx)
    LINK_INVALID = 2001
    LINK_SELF_REFERENCE = 2002

    # Tag errors (3xxx)
    TAG_NOT_FOUND = 3001
    TAG_INVALID = 3002

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    RECONCILIATION_FAILED = 4004

    # AI provider errors (5xxx)
    AI_PROVIDER_FAILED = 5001
    AI_PROVIDER_TIMEOUT = 5002
    AI_RESPONSE_INVALID = 5003

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    PRESENCE_INVALID = 7002


class NotegraphError(Exception):
    """Base exception for all notegraph errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
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
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(NotegraphError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class ValidationError(NotegraphError):
    """Raised for malformed input at the service boundary."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NoteValidationError(ValidationError):
    """Raised when note data fails validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED
    ):
        super().__init__(message, field=field, value=value, code=code)


class TagError(ValidationError):
    """Raised when a tag name or color is invalid."""

    def __init__(
        self,
        message: str,
        tag_name: Optional[str] = None,
        code: ErrorCode = ErrorCode.TAG_INVALID
    ):
        super().__init__(message, field="tag", value=tag_name, code=code)
        self.tag_name = tag_name


class StorageError(NotegraphError):
    """Raised for storage/persistence errors.

    The operation that raised it has been rolled back.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        note_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if note_id:
            details["note_id"] = note_id
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.note_id = note_id
        self.original_error = original_error


class ReconciliationError(StorageError):
    """Raised when a note was saved but its links or tags could not be reconciled.

    Kept distinct from a plain StorageError so callers can tell a failed
    save apart from a saved note whose graph is stale.
    """

    def __init__(
        self,
        note_id: str,
        stage: str,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            f"Note '{note_id}' was saved but {stage} reconciliation failed",
            operation=f"reconcile_{stage}",
            note_id=note_id,
            code=ErrorCode.RECONCILIATION_FAILED,
            original_error=original_error,
        )
        self.stage = stage


class AIProviderError(NotegraphError):
    """Raised by completion providers. Never escapes the suggestion service."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        code: ErrorCode = ErrorCode.AI_PROVIDER_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if provider:
            details["provider"] = provider
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.provider = provider
        self.original_error = original_error


class ConfigurationError(NotegraphError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


def collect_messages(errors: List[Exception]) -> List[str]:
    """Render a list of exceptions as short messages (for batch reports)."""
    return [
        e.message if isinstance(e, NotegraphError) else str(e)
        for e in errors
    ]
