"""SQLAlchemy session listener recording history automatically.

Lifecycle of one transaction:

- ``before_flush``: updates of trackable entities (field changes and
  collection memberships) and updates or deletions of join records are
  recorded; their entries are written by the same flush.
- ``after_flush``: newly inserted trackable entities and join records
  are remembered; they now have their identity.
- ``after_flush_postexec``: creation entries are recorded for them and
  written by the next flush of the same transaction.
- ``before_commit``: entries still staged are flushed.
- ``after_rollback``: bookkeeping is discarded together with the work.

Configuration errors (missing or ambiguous handlers) always propagate.
Other failures are logged and swallowed so auditing never breaks the
business write, unless ``Settings.strict`` is enabled.
"""

import time
from collections.abc import Sequence
from typing import Any

import structlog
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from entity_history.config import Settings, get_settings
from entity_history.core.constants import SESSION_CREATED_KEY, SESSION_STAGED_KEY
from entity_history.core.errors import ConfigurationError
from entity_history.core.utils.text import short_type_name
from entity_history.history.capabilities import is_pivot, is_trackable
from entity_history.history.changeset import (
    build_change_set,
    build_collection_deletions,
    build_collection_diffs,
)
from entity_history.history.context import get_actor_id
from entity_history.history.enums import ChangeType
from entity_history.history.registry import HistoryHandlerRegistry
from entity_history.history.schemas import CollectionDiff


log = structlog.get_logger()


def assign_default_identity(obj: Any) -> None:
    """Populate a pending instance's primary key from its client-side default.

    References to entities inserted by the same flush then carry their
    final identity.
    """
    mapper = inspect(obj).mapper
    for column in mapper.primary_key:
        key = mapper.get_property_by_column(column).key
        if getattr(obj, key) is not None:
            continue

        default = column.default
        if default is None:
            continue
        if default.is_callable:
            setattr(obj, key, default.arg(None))
        elif default.is_scalar:
            setattr(obj, key, default.arg)


class HistoryListener:
    """Records history entries for trackable entities on flush.

    Example:
        listener = HistoryListener(registry)
        listener.install(SessionLocal)
    """

    def __init__(
        self,
        registry: HistoryHandlerRegistry,
        settings: Settings | None = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or get_settings()

    # ============================================================
    # Installation
    # ============================================================

    def _hooks(self) -> list[tuple[str, Any]]:
        return [
            ("before_flush", self.before_flush),
            ("after_flush", self.after_flush),
            ("after_flush_postexec", self.after_flush_postexec),
            ("before_commit", self.before_commit),
            ("after_rollback", self.after_rollback),
        ]

    def install(self, target: Any = Session) -> None:
        """Attach to a Session class, a sessionmaker or a session instance."""
        for identifier, handler in self._hooks():
            if not event.contains(target, identifier, handler):
                event.listen(target, identifier, handler)
        log.info("history_listener_installed", target=repr(target))

    def uninstall(self, target: Any = Session) -> None:
        for identifier, handler in self._hooks():
            if event.contains(target, identifier, handler):
                event.remove(target, identifier, handler)
        log.info("history_listener_uninstalled", target=repr(target))

    # ============================================================
    # Session events
    # ============================================================

    def before_flush(
        self,
        session: Session,
        _flush_context: Any,
        _instances: Any,
    ) -> None:
        """Record updates and join-record changes pending in this flush."""
        for obj in list(session.new):
            if is_trackable(obj) or is_pivot(obj):
                assign_default_identity(obj)

        dirty = [
            obj
            for obj in session.dirty
            if (is_trackable(obj) or is_pivot(obj)) and session.is_modified(obj)
        ]
        diffs = build_collection_diffs(obj for obj in dirty if is_trackable(obj))
        deletions = build_collection_deletions(
            obj for obj in dirty if is_trackable(obj)
        )

        for obj in dirty:
            if is_pivot(obj):
                change_set = build_change_set(obj)
                if change_set:
                    self.handle_pivot_change(obj, ChangeType.PIVOT_UPDATED, change_set)
            else:
                self.handle_update(obj, diffs, deletions)

        for obj in list(session.deleted):
            if is_pivot(obj):
                self.handle_pivot_change(obj, ChangeType.PIVOT_DELETED)
            elif is_trackable(obj):
                self.handle_remove(obj)

    def after_flush(self, session: Session, _flush_context: Any) -> None:
        """Remember inserted entities; staged entries are now written."""
        session.info.pop(SESSION_STAGED_KEY, None)

        created = [obj for obj in session.new if is_trackable(obj) or is_pivot(obj)]
        if created:
            session.info.setdefault(SESSION_CREATED_KEY, []).extend(created)

    def after_flush_postexec(self, session: Session, _flush_context: Any) -> None:
        """Record creation entries for entities inserted by the flush."""
        created = session.info.pop(SESSION_CREATED_KEY, [])

        for obj in created:
            if is_pivot(obj):
                self.handle_pivot_change(obj, ChangeType.PIVOT_CREATED)
            else:
                self.handle_create(obj)

    def before_commit(self, session: Session) -> None:
        """Write entries staged after the last flush."""
        staged = session.info.get(SESSION_STAGED_KEY)
        if staged:
            log.debug("history_staged_entries_flushing", count=len(staged))
            session.flush()

    def after_rollback(self, session: Session) -> None:
        session.info.pop(SESSION_STAGED_KEY, None)
        session.info.pop(SESSION_CREATED_KEY, None)

    # ============================================================
    # Handlers
    # ============================================================

    def handle_create(self, entity: Any) -> None:
        """Record the creation of a trackable entity."""
        entity_class = short_type_name(entity)
        try:
            extractor = self.registry.get_extractor(entity)
            factory = self.registry.get_factory(entity)
            reference = extractor.extract_creation_data(entity)
            factory.create_from_create(get_actor_id(), entity, reference)
        except ConfigurationError:
            raise
        except Exception:
            log.exception("history_create_failed", entity_class=entity_class)
            if self.settings.strict:
                raise

    def handle_update(
        self,
        entity: Any,
        diffs: Sequence[CollectionDiff],
        deletions: Sequence[CollectionDiff],
    ) -> None:
        """Record field and collection changes of a trackable entity.

        Nothing is recorded when every change turns out irrelevant.
        """
        start_time = time.perf_counter()
        entity_class = short_type_name(entity)
        try:
            extractor = self.registry.get_extractor(entity)
            changes = [
                *extractor.extract_update_data_with_entity(
                    entity, build_change_set(entity)
                ),
                *extractor.extract_collection_update_data(entity, diffs),
                *extractor.extract_collection_delete_data(entity, deletions),
            ]

            if not changes:
                log.debug("history_update_skipped", entity_class=entity_class)
                return

            self.registry.get_factory(entity).create_from_update(
                get_actor_id(), entity, changes
            )
            log.debug(
                "history_update_recorded",
                entity_class=entity_class,
                change_count=len(changes),
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
        except ConfigurationError:
            raise
        except Exception:
            log.exception("history_update_failed", entity_class=entity_class)
            if self.settings.strict:
                raise

    def handle_remove(self, entity: Any) -> None:
        """Removal of a trackable entity; nothing is recorded."""
        log.debug("history_remove_ignored", entity_class=short_type_name(entity))

    def handle_pivot_change(
        self,
        pivot: Any,
        change_type: ChangeType,
        change_set: dict[str, tuple[Any, Any]] | None = None,
    ) -> None:
        """Record a join-record change on its owner and its target.

        Both sides are always attempted. A configuration error on either
        side is raised once both have been processed.
        """
        pivot_class = short_type_name(pivot)
        actor_id = get_actor_id()
        failures: list[Exception] = []

        sides = (
            ("owner", pivot.history_owner),
            ("target", pivot.history_target),
        )
        for side, entity in sides:
            if not is_trackable(entity):
                log.debug(
                    "history_pivot_side_skipped",
                    pivot_class=pivot_class,
                    side=side,
                )
                continue

            try:
                extractor = self.registry.get_extractor(entity)
                if side == "owner":
                    change = extractor.extract_pivot_change(
                        pivot, change_type, change_set
                    )
                else:
                    change = extractor.extract_pivot_change_for_target(
                        pivot, change_type, change_set
                    )
                self.registry.get_factory(entity).create_from_update(
                    actor_id, entity, [change]
                )
            except ConfigurationError as exc:
                log.error(
                    "history_pivot_misconfigured",
                    pivot_class=pivot_class,
                    side=side,
                    error=exc.message,
                )
                failures.append(exc)
            except Exception as exc:
                log.exception(
                    "history_pivot_failed",
                    pivot_class=pivot_class,
                    side=side,
                    change_type=change_type.value,
                )
                if self.settings.strict:
                    failures.append(exc)

        for failure in failures:
            if isinstance(failure, ConfigurationError):
                raise failure
        if failures:
            raise failures[0]
