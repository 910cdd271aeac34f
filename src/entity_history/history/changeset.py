"""Raw change-sets read from SQLAlchemy attribute history.

Only usable while the session still holds the pending changes, that is
inside ``before_flush`` or ``after_flush``.
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.orm import MANYTOONE
from sqlalchemy.orm.attributes import History

from entity_history.history.schemas import CollectionDiff


def _values(history: History) -> tuple[Any, Any]:
    old = history.deleted[0] if history.deleted else None
    new = history.added[0] if history.added else None
    return old, new


def build_change_set(obj: Any) -> dict[str, tuple[Any, Any]]:
    """Build the ``field -> (old, new)`` map of an entity's pending changes.

    Covers column attributes and single-valued relationships, in mapper
    declaration order. When a many-to-one relationship changed, its
    foreign key columns are left out so the change is reported once,
    as a relation change.

    Args:
        obj: Mapped instance attached to a session

    Returns:
        Changed fields with their previous and new values
    """
    state = inspect(obj)
    mapper = state.mapper

    covered: set[str] = set()
    for rel in mapper.relationships:
        if rel.uselist or rel.direction is not MANYTOONE:
            continue
        if state.attrs[rel.key].history.has_changes():
            covered.update(
                mapper.get_property_by_column(column).key
                for column in rel.local_columns
            )

    change_set: dict[str, tuple[Any, Any]] = {}
    for prop in mapper.iterate_properties:
        key = prop.key
        if key in covered:
            continue
        if key in mapper.relationships and mapper.relationships[key].uselist:
            continue
        if key not in mapper.relationships and key not in mapper.column_attrs:
            continue

        history = state.attrs[key].history
        if history.has_changes():
            change_set[key] = _values(history)

    return change_set


def _collection_diffs(obj: Any, cleared_only: bool) -> list[CollectionDiff]:
    state = inspect(obj)
    diffs: list[CollectionDiff] = []

    for rel in state.mapper.relationships:
        if not rel.uselist:
            continue

        # AttributeState.history never triggers a lazy load
        history = state.attrs[rel.key].history
        if not history.added and not history.deleted:
            continue
        if cleared_only and (history.added or history.unchanged):
            continue

        diffs.append(
            CollectionDiff(
                owner=obj,
                field=rel.key,
                inserted=tuple(history.added),
                deleted=tuple(history.deleted),
            )
        )

    return diffs


def build_collection_diffs(objects: Iterable[Any]) -> list[CollectionDiff]:
    """Membership changes of every collection of the given entities."""
    diffs: list[CollectionDiff] = []
    for obj in objects:
        diffs.extend(_collection_diffs(obj, cleared_only=False))
    return diffs


def build_collection_deletions(objects: Iterable[Any]) -> list[CollectionDiff]:
    """Collections of the given entities that were emptied entirely."""
    diffs: list[CollectionDiff] = []
    for obj in objects:
        diffs.extend(_collection_diffs(obj, cleared_only=True))
    return diffs
