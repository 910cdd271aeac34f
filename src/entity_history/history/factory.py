"""History factories: build and persist history entries for a subject type."""

import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import structlog
from sqlalchemy.orm import Session, object_session

from entity_history.core.constants import (
    CREATION_FIELD,
    ENUM_TRANSLATION_SUFFIX,
    PIVOT_ACTION_PREFIX,
    PIVOT_TRANSLATION_PREFIX,
    SESSION_STAGED_KEY,
)
from entity_history.core.errors import SubjectNotAttachedError
from entity_history.core.utils.text import short_type_name
from entity_history.history.context import get_history_context
from entity_history.history.enums import ChangeType, Severity
from entity_history.history.models import HistoryEntry, utc_now
from entity_history.history.schemas import (
    ChangeRecord,
    EntityReference,
    PivotChangeRecord,
    serialize_changes,
)


log = structlog.get_logger()


def translation_key_for(change: ChangeRecord) -> str:
    """Display label key of a change record.

    Join-record changes read ``pivot.<field>.<action>``, enumeration
    changes ``<field>.label`` and everything else the field name.
    """
    if change.change_type.is_pivot:
        action = change.change_type.value.removeprefix(PIVOT_ACTION_PREFIX)
        return f"{PIVOT_TRANSLATION_PREFIX}.{change.field}.{action}"

    if change.is_enum:
        return f"{change.field}{ENUM_TRANSLATION_SUFFIX}"

    return change.field


def _pivot_data_of(change: PivotChangeRecord) -> dict[str, Any] | None:
    for side in (change.to, change.from_):
        data = getattr(side, "pivot_data", None)
        if data is None and isinstance(side, dict):
            data = side.get("pivotData")
        if data is not None:
            return data
    return None


class HistoryFactory:
    """Builds history entries for the subject types it supports.

    Entries are added to the subject's session and staged; they are
    written by the running flush or, at the latest, when the
    transaction commits.

    Subclasses may override ``entry_model`` to store entries in another
    mapped class with the same columns, or ``create_history_entry`` to
    set severity and message.
    """

    entry_model: type[HistoryEntry] = HistoryEntry

    def __init__(
        self,
        entity_types: Iterable[type] = (),
        predicate: Callable[[Any], bool] | None = None,
    ) -> None:
        self.entity_types = tuple(entity_types)
        self.predicate = predicate

    def __repr__(self) -> str:
        names = ", ".join(t.__name__ for t in self.entity_types)
        return f"{type(self).__name__}({names})"

    def supports(self, entity: Any) -> bool:
        """Check whether this factory builds entries for the entity's type."""
        if self.predicate is not None:
            return bool(self.predicate(entity))
        return bool(self.entity_types) and isinstance(entity, self.entity_types)

    def subject_type(self, entity: Any) -> str:
        return short_type_name(entity)

    def create_from_create(
        self,
        actor_id: str | None,
        entity: Any,
        reference: EntityReference,
    ) -> HistoryEntry:
        """Create the entry recording that an entity was created.

        The entry is staged on the entity's session and written by its next
        flush, so it commits together with the entity. Rolling that
        transaction back drops the creation entry as well.

        Args:
            actor_id: Who created the entity
            entity: The created entity
            reference: Reference to the created entity

        Returns:
            The staged history entry
        """
        start_time = time.perf_counter()

        change = ChangeRecord(
            field=CREATION_FIELD,
            change_type=ChangeType.CREATE,
            from_=None,
            to=reference,
            related_entity_type=self.subject_type(entity),
        )
        entry = self.create_history_entry(actor_id, entity, [change])
        self.persist(entity, entry)

        log.info(
            "history_entry_created",
            subject_type=entry.subject_type,
            subject_id=entry.subject_id,
            change_type=ChangeType.CREATE.value,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return entry

    def create_from_update(
        self,
        actor_id: str | None,
        entity: Any,
        changes: Sequence[ChangeRecord],
    ) -> HistoryEntry | None:
        """Create the entry recording a batch of changes on an entity.

        Each change gets its translation key and, when it lacks one, the
        subject's type as related entity type.

        Args:
            actor_id: Who made the changes
            entity: The changed entity
            changes: Ordered change records

        Returns:
            The staged history entry, or None when there is nothing to record
        """
        if not changes:
            log.debug(
                "history_entry_skipped",
                subject_type=self.subject_type(entity),
                reason="no_changes",
            )
            return None

        start_time = time.perf_counter()

        normalized = [self.normalize_change(entity, change) for change in changes]
        entry = self.create_history_entry(actor_id, entity, normalized)
        self.persist(entity, entry)

        log.info(
            "history_entry_staged",
            subject_type=entry.subject_type,
            subject_id=entry.subject_id,
            change_count=len(normalized),
            change_types=sorted({c.change_type.value for c in normalized}),
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return entry

    def normalize_change(self, entity: Any, change: ChangeRecord) -> ChangeRecord:
        """Fill in translation key, related type and pivot data."""
        update: dict[str, Any] = {"translation_key": translation_key_for(change)}

        if change.related_entity_type is None:
            update["related_entity_type"] = self.subject_type(entity)

        if isinstance(change, PivotChangeRecord) and change.pivot_data is None:
            update["pivot_data"] = _pivot_data_of(change)

        return change.model_copy(update=update)

    def create_history_entry(
        self,
        actor_id: str | None,
        entity: Any,
        changes: Sequence[ChangeRecord],
        severity: Severity = Severity.LOW,
        message: str | None = None,
    ) -> HistoryEntry:
        """Construct (without persisting) an entry for the subject."""
        context = get_history_context()
        return self.entry_model(
            id=uuid.uuid4(),
            subject_type=self.subject_type(entity),
            subject_id=str(entity.id),
            actor_id=actor_id,
            request_id=context.get("request_id"),
            message=message,
            severity=severity,
            changes=serialize_changes(changes),
            created_at=utc_now(),
        )

    def persist(self, entity: Any, entry: HistoryEntry) -> None:
        """Add the entry to the subject's session and stage it.

        Raises:
            SubjectNotAttachedError: If the subject has no session
        """
        session = self.session_for(entity)
        session.add(entry)
        session.info.setdefault(SESSION_STAGED_KEY, []).append(entry)

    def session_for(self, entity: Any) -> Session:
        session = object_session(entity)
        if session is None:
            raise SubjectNotAttachedError(
                f"{short_type_name(entity)} is not attached to a session",
                details={"subject_type": short_type_name(entity)},
            )
        return session
