"""Capability checks for entities taking part in history tracking.

Entities opt in with marker mixins, in the same way models opt into
other cross-cutting behaviour:

    class User(Base, UUIDMixin, HistoryTrackableMixin):
        __tablename__ = "users"

        @property
        def history_label(self) -> str:
            return self.email

Join records of attributed many-to-many relationships use
PivotHistoryTrackableMixin and describe both sides of the relationship.
"""

from typing import Any, Protocol, runtime_checkable

from sqlalchemy import event
from sqlalchemy.orm import Mapper

from entity_history.core.utils.text import short_type_name, to_snake_case


@runtime_checkable
class Identifiable(Protocol):
    """Anything exposing an identity."""

    id: Any


@runtime_checkable
class Labelable(Protocol):
    """Entity exposing a human-readable, unique label."""

    @property
    def history_label(self) -> str: ...


class HistoryTrackableMixin:
    """Marker mixin to enable history tracking.

    Models inheriting from this mixin get creation and update entries
    recorded by the history listener. Fields listed in
    ``__history_ignored_fields__`` are never recorded for the type.
    """

    __history_trackable__: bool = True
    __history_ignored_fields__: tuple[str, ...] = ()


class PivotHistoryTrackableMixin:
    """Mixin for join entities whose lifecycle is tracked on both sides.

    A join entity is an intermediate row of a many-to-many relationship
    that carries attributes beyond its two foreign keys (for example a
    UserRole granting a role at a point in time). Its creation, updates
    and deletion are recorded in the owner's history and, when the
    target is trackable too, in the target's history.

    Subclasses must implement ``history_owner``, ``history_target``,
    ``relationship_type`` and ``pivot_data``.
    """

    __history_pivot__: bool = True

    @property
    def history_owner(self) -> Any:
        """Entity whose history receives the owner-side record."""
        raise NotImplementedError

    @property
    def history_target(self) -> Any:
        """Entity on the other side of the relationship."""
        raise NotImplementedError

    @property
    def relationship_type(self) -> str:
        """Field name used in the owner's history (e.g. "role")."""
        raise NotImplementedError

    @property
    def reverse_relationship_type(self) -> str:
        """Field name used in the target's history (e.g. "user").

        Defaults to the owner's type name in snake_case.
        """
        return to_snake_case(short_type_name(self.history_owner))

    @property
    def pivot_data(self) -> dict[str, Any]:
        """Extra attributes of the join record, without its foreign keys."""
        raise NotImplementedError


def is_entity(value: Any) -> bool:
    """Check whether a value is a reference to another entity.

    Classes and plain values never count, even if they carry an ``id``.
    """
    return not isinstance(value, type) and isinstance(value, Identifiable)


def is_trackable(value: Any) -> bool:
    """Check whether an entity opted into history tracking."""
    return bool(getattr(value, "__history_trackable__", False))


def is_pivot(value: Any) -> bool:
    """Check whether an entity is a tracked join record."""
    return bool(getattr(value, "__history_pivot__", False))


def get_label(entity: Any) -> str | None:
    """Return the entity's label, or None when it cannot label itself."""
    if isinstance(entity, Labelable):
        return entity.history_label
    return None


def get_ignored_fields(entity: Any) -> tuple[str, ...]:
    """Return the per-type ignore list declared on a trackable entity."""
    return tuple(getattr(entity, "__history_ignored_fields__", ()))


def _keep_previous_value(
    target: Any, value: Any, oldvalue: Any, initiator: Any
) -> None:
    pass


def load_previous_values(mapper: Mapper, class_: type) -> None:
    """Load the current value of a tracked attribute before it is replaced.

    Without active history SQLAlchemy does not fetch the old value of an
    expired column or of an unloaded many-to-one target, and the change
    would be recorded without its previous value. Applied to every mapped
    subclass of the tracking mixins when its mapper is configured.
    """
    keys = [prop.key for prop in mapper.column_attrs]
    keys += [rel.key for rel in mapper.relationships if not rel.uselist]
    for key in keys:
        attribute = getattr(class_, key)
        if not event.contains(attribute, "set", _keep_previous_value):
            event.listen(attribute, "set", _keep_previous_value, active_history=True)


for _mixin in (HistoryTrackableMixin, PivotHistoryTrackableMixin):
    event.listen(_mixin, "mapper_configured", load_previous_values, propagate=True)
