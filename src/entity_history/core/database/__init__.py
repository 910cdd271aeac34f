"""Database layer - declarative base and mixins."""

from entity_history.core.database.base import Base, UUIDMixin


__all__ = [
    "Base",
    "UUIDMixin",
]
