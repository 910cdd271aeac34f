"""Pydantic schemas for detected changes.

These are the value objects passed between the classifier, the
extractors and the factories, and the shape stored in the JSON
``changes`` column of a history entry.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from entity_history.core.constants import ENUM_PAYLOAD_TYPE
from entity_history.history.enums import ChangeType


# ============================================================
# Values
# ============================================================


class EntityReference(BaseModel):
    """Reference to another entity: its id and, when available, a label."""

    model_config = ConfigDict(frozen=True)

    id: str | None
    label: str | None = None


class PivotReference(EntityReference):
    """Entity reference that also carries the join record's extra data."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pivot_data: dict[str, Any] = Field(default_factory=dict, alias="pivotData")


class EnumValue(BaseModel):
    """Enumeration value rendered with its translatable label."""

    model_config = ConfigDict(frozen=True)

    value: Any
    label: str | None
    type: Literal["enum"] = ENUM_PAYLOAD_TYPE

    @classmethod
    def render(cls, enum_name: str, value: Any) -> "EnumValue":
        """Build the payload for one side of an enumeration change.

        Args:
            enum_name: Name used as the label prefix
            value: Raw enumeration value (None allowed)

        Returns:
            Payload with label ``"<enum_name>.<value>"``, or no label for None
        """
        if value is None:
            return cls(value=None, label=None)
        return cls(value=value, label=f"{enum_name}.{value}")


# ============================================================
# Change records
# ============================================================


class ChangeRecord(BaseModel):
    """One detected field-level change.

    Attributes:
        field: Name of the changed attribute
        change_type: Kind of change
        from_: Previous value (serialized as ``from``)
        to: New value
        translation_key: Display label key, defaults to the field name
        related_entity_type: Short type name of the other side of a relation
        enum_name: Enumeration name when the field is an enumeration
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    field: str = Field(..., min_length=1)
    change_type: ChangeType = Field(..., alias="type")
    from_: Any = Field(default=None, alias="from")
    to: Any = None
    translation_key: str | None = Field(default=None, alias="translationKey")
    related_entity_type: str | None = Field(default=None, alias="entityType")
    enum_name: str | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def default_translation_key(cls, data: Any) -> Any:
        """Fall back to the field name when no translation key is given."""
        if isinstance(data, dict):
            keys = ("translation_key", "translationKey")
            if all(data.get(key) is None for key in keys):
                data = {**data, "translation_key": data.get("field")}
        return data

    @property
    def is_enum(self) -> bool:
        """Whether the change was classified as an enumeration change."""
        return self.enum_name is not None

    def to_storage(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible shape stored on history entries."""
        return self.model_dump(mode="json", by_alias=True)


class PivotChangeRecord(ChangeRecord):
    """Change of an attributed many-to-many join record.

    Attributes:
        pivot_entity_type: Short type name of the join entity
        pivot_data: Extra attributes carried by the join entity
    """

    pivot_entity_type: str = Field(..., min_length=1, alias="pivotEntityType")
    pivot_data: dict[str, Any] | None = Field(default=None, alias="pivotData")


def serialize_changes(changes: Iterable[ChangeRecord]) -> list[dict[str, Any]]:
    """Serialize change records for storage, preserving order."""
    return [change.to_storage() for change in changes]


def deserialize_changes(data: Iterable[dict[str, Any]]) -> list[ChangeRecord]:
    """Rebuild typed change records from stored JSON.

    Records carrying a pivot entity type come back as PivotChangeRecord.
    """
    records: list[ChangeRecord] = []
    for item in data:
        if item.get("pivotEntityType"):
            records.append(PivotChangeRecord.model_validate(item))
        else:
            records.append(ChangeRecord.model_validate(item))
    return records


# ============================================================
# Inbound deltas
# ============================================================


@dataclass(frozen=True)
class CollectionDiff:
    """Membership delta of one collection-valued relationship.

    Attributes:
        owner: Entity instance owning the collection
        field: Relationship attribute name on the owner
        inserted: Items added to the collection
        deleted: Items removed from the collection
    """

    owner: Any
    field: str
    inserted: Sequence[Any] = ()
    deleted: Sequence[Any] = ()

    @property
    def is_empty(self) -> bool:
        """Whether the diff neither adds nor removes anything."""
        return not self.inserted and not self.deleted
