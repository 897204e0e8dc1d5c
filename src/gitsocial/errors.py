"""Error codes and the ``Result`` wrapper returned by public operations.

Store and thread operations never raise for expected failures. They return a
``Result`` carrying either ``data`` or an ``ErrorInfo``; exceptions are
reserved for programming errors and are converted to ``INTERNAL_ERROR`` at the
outer boundary of each public operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCategory(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    REMOTE_OPERATION_FAILED = "REMOTE_OPERATION_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    INTERNAL = "INTERNAL"


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_STORAGE_BASE = "INVALID_STORAGE_BASE"
    MISSING_BRANCH = "MISSING_BRANCH"
    REPOSITORY_NOT_FOUND = "REPOSITORY_NOT_FOUND"
    POST_NOT_FOUND = "POST_NOT_FOUND"
    REMOTE_OPERATION_FAILED = "REMOTE_OPERATION_FAILED"
    INIT_FAILED = "INIT_FAILED"
    LOCK_FILE_ERROR = "LOCK_FILE_ERROR"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES: Dict[ErrorCode, ErrorCategory] = {
    ErrorCode.INVALID_INPUT: ErrorCategory.INVALID_INPUT,
    ErrorCode.INVALID_STORAGE_BASE: ErrorCategory.INVALID_INPUT,
    ErrorCode.MISSING_BRANCH: ErrorCategory.INVALID_INPUT,
    ErrorCode.REPOSITORY_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.POST_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.REMOTE_OPERATION_FAILED: ErrorCategory.REMOTE_OPERATION_FAILED,
    ErrorCode.INIT_FAILED: ErrorCategory.REMOTE_OPERATION_FAILED,
    ErrorCode.LOCK_FILE_ERROR: ErrorCategory.REMOTE_OPERATION_FAILED,
    ErrorCode.VALIDATION_FAILED: ErrorCategory.VALIDATION_FAILED,
    ErrorCode.PARTIAL_FAILURE: ErrorCategory.PARTIAL_FAILURE,
    ErrorCode.INTERNAL_ERROR: ErrorCategory.INTERNAL,
}


@dataclass(frozen=True)
class ErrorInfo:
    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/failure envelope. Exactly one of ``data`` or ``error`` is meaningful."""

    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "Result[T]":
        return cls(data=data)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        **details: Any,
    ) -> "Result[T]":
        return cls(error=ErrorInfo(code=code, message=message, details=details))

    def unwrap(self) -> T:
        """Return ``data`` or raise ``GitSocialError`` carrying the error."""
        if self.error is not None:
            raise GitSocialError(self.error)
        return self.data  # type: ignore[return-value]


class GitSocialError(Exception):
    """Raised by ``Result.unwrap`` for callers that prefer exceptions."""

    def __init__(self, info: ErrorInfo):
        super().__init__(f"{info.code.value}: {info.message}")
        self.info = info
