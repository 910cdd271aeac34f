"""Classification of raw field deltas into change records.

The classifier decides, for one ``(field, old, new)`` triple, whether
anything changed and what kind of change it is:

1. equal values (same instant for datetimes) produce nothing
2. ignored fields produce nothing
3. a reference to another entity on either side is a relation change
4. registered enumeration fields produce enumeration payloads
5. everything else is a scalar update

Collection memberships and join-record lifecycles are classified
separately. The classifier knows nothing about concrete entity shapes:
enumeration and collection registries are supplied per instance, or
discovered from ORM metadata by MetadataAwareClassifier.
"""

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import structlog

from entity_history.config import Settings, get_settings
from entity_history.core.constants import BOOLEAN_FALSE, BOOLEAN_TRUE
from entity_history.core.errors import ExtractionError, InvalidPivotActionError
from entity_history.core.utils.text import short_type_name
from entity_history.history.capabilities import (
    get_ignored_fields,
    get_label,
    is_entity,
)
from entity_history.history.enums import ChangeType
from entity_history.history.schemas import (
    ChangeRecord,
    CollectionDiff,
    EntityReference,
    EnumValue,
    PivotChangeRecord,
    PivotReference,
)


log = structlog.get_logger()

ChangeSet = Mapping[str, tuple[Any, Any] | Sequence[Any]]


def values_equal(old: Any, new: Any) -> bool:
    """Check whether two raw values are semantically the same.

    Datetimes are equal when they denote the same instant, whatever
    their timezone representation. Booleans never equal numbers.
    """
    if old is new:
        return True

    if isinstance(old, datetime) and isinstance(new, datetime):
        return old.timestamp() == new.timestamp()

    if isinstance(old, bool) != isinstance(new, bool):
        return False

    try:
        return bool(old == new)
    except (TypeError, ValueError):
        return False


class ChangeClassifier:
    """Turns raw deltas into ChangeRecord instances.

    Attributes:
        enums: Registered enumeration fields, field name -> enumeration name
        collections: Tracked collection-valued fields, in processing order
        ignored_fields: Fields that never produce a record
        date_format: strftime format for temporal values
    """

    def __init__(
        self,
        enums: Mapping[str, str] | None = None,
        collections: Iterable[str] | None = None,
        ignored_fields: Iterable[str] = (),
        date_format: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.enums = dict(enums or {})
        self.collections = tuple(collections or ())
        self.ignored_fields = frozenset(ignored_fields) | frozenset(
            settings.ignored_fields
        )
        self.date_format = date_format or settings.date_format

    # ============================================================
    # Registries
    # ============================================================

    def enum_fields(self, entity_type: type | None = None) -> Mapping[str, str]:
        """Enumeration fields for an entity type."""
        return self.enums

    def collection_fields(self, entity_type: type | None = None) -> Sequence[str]:
        """Tracked collection fields for an entity type."""
        return tuple(
            field for field in self.collections if field not in self.ignored_fields
        )

    def defined_enums(self) -> Mapping[str, str]:
        """Enumeration fields that apply to the change-set being classified."""
        return self.enum_fields()

    def defined_collections(self, entity: Any) -> Sequence[str]:
        """Tracked collection fields of a given entity instance."""
        ignored = get_ignored_fields(entity)
        return tuple(
            field
            for field in self.collection_fields(type(entity))
            if field not in ignored
        )

    # ============================================================
    # Field changes
    # ============================================================

    def classify_change(
        self,
        field: str,
        old: Any,
        new: Any,
        extra_ignored: Iterable[str] = (),
    ) -> ChangeRecord | None:
        """Classify one field delta.

        Args:
            field: Name of the changed attribute
            old: Previous value
            new: New value
            extra_ignored: Additional fields to ignore for this call

        Returns:
            The change record, or None when nothing relevant changed
        """
        if values_equal(old, new):
            return None

        if field in self.ignored_fields or field in extra_ignored:
            return None

        if is_entity(old) or is_entity(new):
            return self.relation_change(field, old, new)

        enum_name = self.defined_enums().get(field)
        if enum_name is not None:
            return self.enum_change(field, old, new, enum_name)

        return self.scalar_change(field, old, new)

    def classify_change_set(
        self,
        change_set: ChangeSet,
        extra_ignored: Iterable[str] = (),
    ) -> list[ChangeRecord]:
        """Classify every field of a change-set, in iteration order.

        Raises:
            ExtractionError: If a change-set entry is not an (old, new) pair
        """
        extra = frozenset(extra_ignored)
        changes: list[ChangeRecord] = []

        for field, values in change_set.items():
            try:
                old, new = values
            except (TypeError, ValueError) as exc:
                raise ExtractionError(
                    f"Change-set entry for field {field} is not an (old, new) pair",
                    details={"field": field},
                ) from exc

            change = self.classify_change(field, old, new, extra)
            if change is not None:
                changes.append(change)

        return changes

    def classify_change_set_for(
        self,
        entity: Any,
        change_set: ChangeSet,
    ) -> list[ChangeRecord]:
        """Classify a change-set of a known entity.

        Applies the ignore list the entity's type declares.
        """
        return self.classify_change_set(change_set, get_ignored_fields(entity))

    def relation_change(self, field: str, old: Any, new: Any) -> ChangeRecord:
        """Build a relation change; the related type prefers the new side."""
        related_entity_type = None
        if is_entity(new):
            related_entity_type = short_type_name(new)
        elif is_entity(old):
            related_entity_type = short_type_name(old)

        return ChangeRecord(
            field=field,
            change_type=ChangeType.RELATION_CHANGED,
            from_=self.entity_reference(old),
            to=self.entity_reference(new),
            related_entity_type=related_entity_type,
        )

    def enum_change(
        self,
        field: str,
        old: Any,
        new: Any,
        enum_name: str,
    ) -> ChangeRecord:
        """Build an enumeration update with labelled payloads."""
        return ChangeRecord(
            field=field,
            change_type=ChangeType.UPDATE,
            from_=EnumValue.render(enum_name, self._enum_value(old)),
            to=EnumValue.render(enum_name, self._enum_value(new)),
            enum_name=enum_name,
        )

    def scalar_change(self, field: str, old: Any, new: Any) -> ChangeRecord:
        """Build a scalar update with rendered values."""
        return ChangeRecord(
            field=field,
            change_type=ChangeType.UPDATE,
            from_=self.render_scalar(old),
            to=self.render_scalar(new),
        )

    # ============================================================
    # Collection changes
    # ============================================================

    def classify_collection_diffs(
        self,
        entity: Any,
        diffs: Iterable[CollectionDiff],
    ) -> list[ChangeRecord]:
        """Classify membership changes of the entity's tracked collections.

        Diffs owned by another instance or touching an untracked field
        are discarded. For each collection all removals come before all
        additions.
        """
        diffs = list(diffs)
        changes: list[ChangeRecord] = []

        for field in self.defined_collections(entity):
            for diff in diffs:
                if diff.owner is not entity:
                    continue

                if diff.field != field:
                    continue

                for item in diff.deleted:
                    if is_entity(item):
                        changes.append(self.collection_change(field, item, None))

                for item in diff.inserted:
                    if is_entity(item):
                        changes.append(self.collection_change(field, None, item))

        return changes

    def collection_change(
        self,
        field: str,
        removed: Any | None,
        added: Any | None,
    ) -> ChangeRecord:
        """Build a removal (``removed`` set) or addition (``added`` set)."""
        if removed is not None:
            return ChangeRecord(
                field=field,
                change_type=ChangeType.REMOVED_FROM_COLLECTION,
                from_=self.entity_reference(removed),
                to=None,
                related_entity_type=short_type_name(removed),
            )

        return ChangeRecord(
            field=field,
            change_type=ChangeType.ADDED_TO_COLLECTION,
            from_=None,
            to=self.entity_reference(added),
            related_entity_type=short_type_name(added),
        )

    # ============================================================
    # Join records
    # ============================================================

    def classify_pivot_change(
        self,
        pivot: Any,
        change_type: ChangeType | str,
        change_set: ChangeSet | None = None,
    ) -> PivotChangeRecord:
        """Describe a join-record change from the owner's side.

        The field is the pivot's relationship type and the values
        reference the target entity.
        """
        return self._pivot_change(
            pivot,
            change_type,
            change_set,
            field=pivot.relationship_type,
            other=pivot.history_target,
        )

    def classify_pivot_change_for_target(
        self,
        pivot: Any,
        change_type: ChangeType | str,
        change_set: ChangeSet | None = None,
    ) -> PivotChangeRecord:
        """Describe a join-record change from the target's side.

        The field is the reverse relationship type and the values
        reference the owner entity.
        """
        return self._pivot_change(
            pivot,
            change_type,
            change_set,
            field=pivot.reverse_relationship_type,
            other=pivot.history_owner,
        )

    def pivot_reference(self, pivot: Any, entity: Any) -> PivotReference:
        """Reference to one side of a join record, with the pivot's data."""
        reference = self.entity_reference(entity)
        if reference is None:
            raise ExtractionError(
                f"Join record {short_type_name(pivot)} references a non-entity",
                details={"pivot_entity_type": short_type_name(pivot)},
            )

        return PivotReference(
            id=reference.id,
            label=reference.label,
            pivot_data=self.render_pivot_data(pivot),
        )

    def render_pivot_data(self, pivot: Any) -> dict[str, Any]:
        """Extra attributes of a join record, rendered for storage."""
        return {
            key: self.render_value(value) for key, value in pivot.pivot_data.items()
        }

    def _pivot_change(
        self,
        pivot: Any,
        change_type: ChangeType | str,
        change_set: ChangeSet | None,
        field: str,
        other: Any,
    ) -> PivotChangeRecord:
        try:
            action = ChangeType(change_type)
        except ValueError as exc:
            raise InvalidPivotActionError(action=str(change_type)) from exc

        if not action.is_pivot:
            raise InvalidPivotActionError(action=action.value)

        reference = self.pivot_reference(pivot, other)

        if action is ChangeType.PIVOT_CREATED:
            from_value, to_value = None, reference
        elif action is ChangeType.PIVOT_DELETED:
            from_value, to_value = reference, None
        else:
            from_value = {
                key: self.render_value(values[0])
                for key, values in (change_set or {}).items()
                if key not in self.ignored_fields
            }
            to_value = reference

        return PivotChangeRecord(
            field=field,
            change_type=action,
            from_=from_value,
            to=to_value,
            related_entity_type=short_type_name(other),
            pivot_entity_type=short_type_name(pivot),
            pivot_data=reference.pivot_data,
        )

    # ============================================================
    # Rendering
    # ============================================================

    def entity_reference(self, entity: Any) -> EntityReference | None:
        """Reference to an entity, None for anything that is not one."""
        if not is_entity(entity):
            return None

        label = get_label(entity)
        return EntityReference(
            id=str(entity.id) if entity.id is not None else None,
            label=str(label) if label is not None else None,
        )

    def render_scalar(self, value: Any) -> Any:
        """Render a scalar for an update record.

        Booleans become ``"1"``/``""`` and numbers their string form.
        """
        if isinstance(value, bool):
            return BOOLEAN_TRUE if value else BOOLEAN_FALSE

        if isinstance(value, int | float | Decimal):
            return str(value)

        return self.render_value(value)

    def render_value(self, value: Any) -> Any:
        """Render any value to a JSON-compatible form."""
        if value is None or isinstance(value, str | int | float | bool):
            return value

        result: Any
        if is_entity(value):
            reference = self.entity_reference(value)
            result = reference.model_dump() if reference is not None else None
        elif isinstance(value, datetime | date):
            result = value.strftime(self.date_format)
        elif isinstance(value, time):
            result = value.isoformat()
        elif isinstance(value, UUID | Decimal):
            result = str(value)
        elif isinstance(value, Enum):
            result = value.value
        elif isinstance(value, dict):
            result = {k: self.render_value(v) for k, v in value.items()}
        elif isinstance(value, list | tuple | set | frozenset):
            result = [self.render_value(item) for item in value]
        else:
            # Fallback: convert to string
            result = str(value)

        return result

    @staticmethod
    def _enum_value(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value
