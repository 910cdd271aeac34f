"""Error handling module for the history engine."""

from entity_history.core.errors.exceptions import (
    AmbiguousHandlerError,
    AppException,
    ConfigurationError,
    ExtractionError,
    HandlerNotFoundError,
    HistoryError,
    InvalidPivotActionError,
    SubjectNotAttachedError,
)


__all__ = [
    "AmbiguousHandlerError",
    "AppException",
    "ConfigurationError",
    "ExtractionError",
    "HandlerNotFoundError",
    "HistoryError",
    "InvalidPivotActionError",
    "SubjectNotAttachedError",
]
