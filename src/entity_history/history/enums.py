"""Enumerations stored in history entries."""

from enum import Enum


class ChangeType(str, Enum):
    """Kind of change a single record describes.

    Values are persisted inside the JSON changes column, so they must
    stay stable.
    """

    CREATE = "created"
    UPDATE = "update"
    RELATION_CHANGED = "change-relation"
    REMOVED_FROM_COLLECTION = "removed"
    ADDED_TO_COLLECTION = "added"
    PIVOT_CREATED = "pivot_created"
    PIVOT_UPDATED = "pivot_updated"
    PIVOT_DELETED = "pivot_deleted"

    @property
    def is_pivot(self) -> bool:
        """Whether this change type describes a join-record lifecycle."""
        return self in PIVOT_CHANGE_TYPES


PIVOT_CHANGE_TYPES = frozenset(
    {
        ChangeType.PIVOT_CREATED,
        ChangeType.PIVOT_UPDATED,
        ChangeType.PIVOT_DELETED,
    }
)


class Severity(str, Enum):
    """Importance of a history entry."""

    LOW = "low"  # most common informative changes
    MEDIUM = "medium"  # rarer, more important changes
    HIGH = "high"  # destructive actions or failed business operations
