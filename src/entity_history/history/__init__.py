"""Change tracking for SQLAlchemy entities."""

from entity_history.history.capabilities import (
    HistoryTrackableMixin,
    PivotHistoryTrackableMixin,
)
from entity_history.history.classifier import ChangeClassifier
from entity_history.history.context import (
    clear_history_context,
    get_history_context,
    history_context,
    set_history_context,
)
from entity_history.history.enums import ChangeType, Severity
from entity_history.history.extractor import ChangeExtractor
from entity_history.history.factory import HistoryFactory
from entity_history.history.listener import HistoryListener
from entity_history.history.metadata import (
    MetadataAwareClassifier,
    MetadataCache,
    SQLAlchemyMetadataProvider,
)
from entity_history.history.models import HistoryEntry
from entity_history.history.registry import HistoryHandlerRegistry
from entity_history.history.repository import HistoryRepository
from entity_history.history.schemas import (
    ChangeRecord,
    CollectionDiff,
    EntityReference,
    EnumValue,
    PivotChangeRecord,
    PivotReference,
)


__all__ = [
    # Classification
    "ChangeClassifier",
    "ChangeExtractor",
    # Schemas
    "ChangeRecord",
    "ChangeType",
    "CollectionDiff",
    "EntityReference",
    "EnumValue",
    # Persistence
    "HistoryEntry",
    "HistoryFactory",
    "HistoryHandlerRegistry",
    "HistoryListener",
    "HistoryRepository",
    # Capabilities
    "HistoryTrackableMixin",
    "MetadataAwareClassifier",
    "MetadataCache",
    "PivotChangeRecord",
    "PivotHistoryTrackableMixin",
    "PivotReference",
    "SQLAlchemyMetadataProvider",
    "Severity",
    # Context
    "clear_history_context",
    "get_history_context",
    "history_context",
    "set_history_context",
]
