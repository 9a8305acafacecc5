"""Error taxonomy shared by every stage of the generation pipeline.

Stages raise ``PipelineError`` tagged with an ``ErrorKind``. The orchestrator
turns it into an ``ApiError`` carrying a stable boundary code; nothing else
about the failure (exception type, traceback, upstream text) leaves the
service.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorCode(str, enum.Enum):
    INVALID_FILE = "INVALID_FILE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    AI_ERROR = "AI_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"


class ErrorKind(str, enum.Enum):
    INVALID_INPUT = "InvalidInput"
    FILE_TOO_LARGE = "FileTooLarge"
    EMPTY_DOCUMENT = "EmptyDocument"
    MISSING_DEPENDENCY = "MissingDependency"
    CONVERSION_FAILED = "ConversionFailed"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    CONFIGURATION_ERROR = "ConfigurationError"
    RATE_LIMITED = "RateLimited"
    CONTENT_FILTERED = "ContentFiltered"
    TIMEOUT = "Timeout"
    GENERATION_FAILED = "GenerationFailed"
    VALIDATION_FAILED = "ValidationFailed"

    @property
    def code(self) -> ErrorCode:
        return _KIND_CODES[self]

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_KIND_CODES: dict[ErrorKind, ErrorCode] = {
    ErrorKind.INVALID_INPUT: ErrorCode.INVALID_FILE,
    ErrorKind.FILE_TOO_LARGE: ErrorCode.FILE_TOO_LARGE,
    ErrorKind.EMPTY_DOCUMENT: ErrorCode.INVALID_FILE,
    ErrorKind.MISSING_DEPENDENCY: ErrorCode.PROCESSING_ERROR,
    ErrorKind.CONVERSION_FAILED: ErrorCode.PROCESSING_ERROR,
    ErrorKind.PAYLOAD_TOO_LARGE: ErrorCode.PAYLOAD_TOO_LARGE,
    ErrorKind.CONFIGURATION_ERROR: ErrorCode.AI_ERROR,
    ErrorKind.RATE_LIMITED: ErrorCode.RATE_LIMITED,
    ErrorKind.CONTENT_FILTERED: ErrorCode.AI_ERROR,
    ErrorKind.TIMEOUT: ErrorCode.TIMEOUT,
    ErrorKind.GENERATION_FAILED: ErrorCode.AI_ERROR,
    ErrorKind.VALIDATION_FAILED: ErrorCode.AI_ERROR,
}

_RETRYABLE = frozenset(
    {
        ErrorKind.CONVERSION_FAILED,
        ErrorKind.RATE_LIMITED,
        ErrorKind.TIMEOUT,
        ErrorKind.GENERATION_FAILED,
        ErrorKind.VALIDATION_FAILED,
    }
)


class PipelineError(Exception):
    """A stage failure tagged with its taxonomy kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        details: Any = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return f"PipelineError({self.kind.value!r}, {self.message!r})"


class ApiError(BaseModel):
    """Error body surfaced at the HTTP boundary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: ErrorCode
    message: str
    details: Optional[dict[str, str]] = None
    retry_after: Optional[int] = None
    retryable: bool = False


class ErrorDescription(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: ErrorCode
    title: str
    suggestion: str
    can_retry: bool


_DESCRIPTIONS: dict[ErrorCode, tuple[str, str, bool]] = {
    ErrorCode.INVALID_FILE: (
        "Invalid PDF file",
        "Check that the file is a valid, non-empty PDF document and upload it again.",
        False,
    ),
    ErrorCode.FILE_TOO_LARGE: (
        "File too large",
        "Use a smaller file or split the document into several PDFs.",
        False,
    ),
    ErrorCode.PAYLOAD_TOO_LARGE: (
        "Document too heavy",
        "Try a shorter PDF or one with fewer high-resolution images.",
        False,
    ),
    ErrorCode.RATE_LIMITED: (
        "Too many requests",
        "Wait a moment before trying again; the limit resets shortly.",
        True,
    ),
    ErrorCode.TIMEOUT: (
        "Generation took too long",
        "Retry, ideally with a shorter document.",
        True,
    ),
    ErrorCode.PROCESSING_ERROR: (
        "Processing error",
        "The document could not be converted; retrying often helps.",
        True,
    ),
    ErrorCode.AI_ERROR: (
        "Generation error",
        "The AI service failed to produce flashcards; please retry.",
        True,
    ),
}


def describe_error(code: ErrorCode | str) -> ErrorDescription:
    """Title, corrective suggestion and retry affordance for a boundary code."""
    try:
        resolved = ErrorCode(code)
    except ValueError:
        resolved = ErrorCode.PROCESSING_ERROR
    title, suggestion, can_retry = _DESCRIPTIONS[resolved]
    return ErrorDescription(
        code=resolved, title=title, suggestion=suggestion, can_retry=can_retry
    )


def to_api_error(exc: BaseException) -> ApiError:
    """Map any exception to the boundary error shape."""
    if isinstance(exc, PipelineError):
        details = None
        if exc.details is not None:
            details = {"error": str(exc.details)}
        return ApiError(
            code=exc.kind.code,
            message=exc.message,
            details=details,
            retry_after=exc.retry_after,
            retryable=exc.kind.retryable,
        )
    return ApiError(
        code=ErrorCode.PROCESSING_ERROR,
        message="An unexpected error occurred while processing the document.",
        retryable=True,
    )


__all__ = [
    "ApiError",
    "ErrorCode",
    "ErrorDescription",
    "ErrorKind",
    "PipelineError",
    "describe_error",
    "to_api_error",
]
