"""Domain exceptions for the history engine.

Configuration errors signal wiring mistakes and always propagate.
Everything else raised while auditing is subject to the listener's
failure policy (logged and swallowed unless strict mode is enabled).
"""

from typing import Any


class AppException(Exception):
    """Base exception for all engine errors.

    All domain exceptions should inherit from this class.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional error details
    """

    message: str = "An unexpected error occurred"
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)


class HistoryError(AppException):
    """Base class for errors raised while recording history."""

    message = "History recording failed"
    error_code = "history_error"


class ConfigurationError(HistoryError):
    """Raised when the handler wiring for an entity type is wrong.

    These indicate a setup mistake, not a runtime condition.
    """

    message = "History is misconfigured"
    error_code = "history_configuration_error"


class HandlerNotFoundError(ConfigurationError):
    """Raised when no extractor or factory claims an entity type.

    Example:
        raise HandlerNotFoundError.factory_not_found("User")
    """

    message = "No history handler found"
    error_code = "history_handler_not_found"

    def __init__(
        self,
        message: str | None = None,
        entity_type: str | None = None,
        handler_kind: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if entity_type:
            details["entity_type"] = entity_type
        if handler_kind:
            details["handler_kind"] = handler_kind
        super().__init__(message=message, details=details, **kwargs)

    @classmethod
    def extractor_not_found(cls, entity_type: str) -> "HandlerNotFoundError":
        """Build the error for an entity type without a change extractor."""
        return cls(
            f"Change extractor for entity {entity_type} not found, "
            "maybe you forgot to register it?",
            entity_type=entity_type,
            handler_kind="extractor",
        )

    @classmethod
    def factory_not_found(cls, entity_type: str) -> "HandlerNotFoundError":
        """Build the error for an entity type without a history factory."""
        return cls(
            f"History factory for entity {entity_type} not found, "
            "maybe you forgot to register it?",
            entity_type=entity_type,
            handler_kind="factory",
        )


class AmbiguousHandlerError(ConfigurationError):
    """Raised when more than one handler claims the same entity type.

    Example:
        raise AmbiguousHandlerError(
            entity_type="User",
            handler_kind="factory",
            candidates=["UserHistoryFactory", "AccountHistoryFactory"],
        )
    """

    message = "More than one history handler claims the entity type"
    error_code = "history_handler_ambiguous"

    def __init__(
        self,
        message: str | None = None,
        entity_type: str | None = None,
        handler_kind: str | None = None,
        candidates: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if entity_type:
            details["entity_type"] = entity_type
        if handler_kind:
            details["handler_kind"] = handler_kind
        if candidates:
            details["candidates"] = candidates
        if message is None and entity_type:
            message = (
                f"{len(candidates or [])} {handler_kind or 'handler'}s claim "
                f"entity {entity_type}, exactly one is allowed"
            )
        super().__init__(message=message, details=details, **kwargs)


class ExtractionError(HistoryError):
    """Raised when a change cannot be classified or rendered."""

    message = "Change extraction failed"
    error_code = "history_extraction_error"


class InvalidPivotActionError(ExtractionError):
    """Raised when a join-record change uses a non-pivot change type.

    Example:
        raise InvalidPivotActionError(action="update")
    """

    message = "Invalid action type for pivot entity"
    error_code = "history_invalid_pivot_action"

    def __init__(
        self,
        message: str | None = None,
        action: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if action:
            details["action"] = action
            message = message or f"Invalid action type for pivot entity: {action}"
        super().__init__(message=message, details=details, **kwargs)


class SubjectNotAttachedError(HistoryError):
    """Raised when a history subject is not attached to a session."""

    message = "History subject is not attached to a session"
    error_code = "history_subject_detached"
