"""Core services and cross-cutting concerns."""

from entity_history.core.database import Base
from entity_history.core.errors import (
    AppException,
    ConfigurationError,
    HistoryError,
)


__all__ = [
    # Errors
    "AppException",
    # Database
    "Base",
    "ConfigurationError",
    "HistoryError",
]
