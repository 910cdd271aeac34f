"""Change extractors: the per-type adapter between raw deltas and records."""

from collections.abc import Callable, Iterable
from typing import Any

from entity_history.history.classifier import ChangeClassifier, ChangeSet
from entity_history.history.enums import ChangeType
from entity_history.history.schemas import (
    ChangeRecord,
    CollectionDiff,
    EntityReference,
    PivotChangeRecord,
)


class ChangeExtractor:
    """Extracts change records for the entity types it supports.

    One extractor serves one or more entity types, selected either by
    class (``entity_types``) or by an arbitrary predicate. Override the
    ``extract_*`` methods to customise what gets recorded for a type.

    Example:
        extractor = ChangeExtractor(
            MetadataAwareClassifier(),
            entity_types=(User,),
        )
    """

    def __init__(
        self,
        classifier: ChangeClassifier,
        entity_types: Iterable[type] = (),
        predicate: Callable[[Any], bool] | None = None,
    ) -> None:
        self.classifier = classifier
        self.entity_types = tuple(entity_types)
        self.predicate = predicate

    def __repr__(self) -> str:
        names = ", ".join(t.__name__ for t in self.entity_types)
        return f"{type(self).__name__}({names})"

    def supports(self, entity: Any) -> bool:
        """Check whether this extractor handles the entity's type."""
        if self.predicate is not None:
            return bool(self.predicate(entity))
        return bool(self.entity_types) and isinstance(entity, self.entity_types)

    def extract_creation_data(self, entity: Any) -> EntityReference:
        """Reference to a newly created entity.

        Entities that cannot label themselves get a reference without label.
        """
        reference = self.classifier.entity_reference(entity)
        if reference is not None:
            return reference

        identity = getattr(entity, "id", None)
        return EntityReference(id=str(identity) if identity is not None else None)

    def extract_update_data(self, change_set: ChangeSet) -> list[ChangeRecord]:
        """Classify a change-set without knowing its entity."""
        return self.classifier.classify_change_set(change_set)

    def extract_update_data_with_entity(
        self,
        entity: Any,
        change_set: ChangeSet,
    ) -> list[ChangeRecord]:
        """Classify a change-set of a known entity.

        Type-dependent knowledge (enumeration fields, declared ignore
        lists) is applied here.
        """
        return self.classifier.classify_change_set_for(entity, change_set)

    def extract_collection_update_data(
        self,
        entity: Any,
        diffs: Iterable[CollectionDiff],
    ) -> list[ChangeRecord]:
        """Records for items added to or removed from tracked collections."""
        return self.classifier.classify_collection_diffs(entity, diffs)

    def extract_collection_delete_data(
        self,
        entity: Any,
        diffs: Iterable[CollectionDiff],
    ) -> list[ChangeRecord]:
        """Records for collections that were emptied entirely.

        Nothing is recorded by default: the individual removals are
        already reported as collection updates.
        """
        return []

    def extract_remove_data(self, entity: Any) -> EntityReference:
        """Reference to a removed entity, same shape as for creation.

        Used when a deletion is documented on the other side of a
        relationship.
        """
        return self.extract_creation_data(entity)

    def extract_pivot_change(
        self,
        pivot: Any,
        change_type: ChangeType | str,
        change_set: ChangeSet | None = None,
    ) -> PivotChangeRecord:
        """Join-record change as seen from the owner."""
        return self.classifier.classify_pivot_change(pivot, change_type, change_set)

    def extract_pivot_change_for_target(
        self,
        pivot: Any,
        change_type: ChangeType | str,
        change_set: ChangeSet | None = None,
    ) -> PivotChangeRecord:
        """Join-record change as seen from the target."""
        return self.classifier.classify_pivot_change_for_target(
            pivot, change_type, change_set
        )
