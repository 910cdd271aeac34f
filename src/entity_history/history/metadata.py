"""Metadata-driven discovery of enumeration and collection fields.

Instead of listing enumeration and collection fields by hand, a
MetadataAwareClassifier asks the ORM mapping of the entity being
processed. Lookups are cached per entity type.
"""

import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Protocol, TypeVar

import structlog
from sqlalchemy import Enum as SAEnum
from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapper

from entity_history.config import Settings, get_settings
from entity_history.core.errors import ConfigurationError
from entity_history.core.utils.text import short_type_name
from entity_history.history.capabilities import get_ignored_fields
from entity_history.history.classifier import ChangeClassifier, ChangeSet
from entity_history.history.schemas import ChangeRecord


log = structlog.get_logger()

T = TypeVar("T")


class TypeMetadataProvider(Protocol):
    """Source of per-type field metadata."""

    def enum_fields(self, entity_type: type) -> Mapping[str, type | None]:
        """Enumeration fields of a type, mapped to their enum class if known."""
        ...

    def collection_associations(self, entity_type: type) -> Mapping[str, type]:
        """Collection-valued associations of a type, mapped to the item type."""
        ...

    def association_target_type(self, entity_type: type, field: str) -> type | None:
        """Type on the other side of an association, None if not an association."""
        ...


class SQLAlchemyMetadataProvider:
    """Reads field metadata from SQLAlchemy mappers."""

    def _mapper(self, entity_type: type) -> Mapper[Any]:
        try:
            return inspect(entity_type)
        except NoInspectionAvailable as exc:
            raise ConfigurationError(
                f"Entity type {short_type_name(entity_type)} is not mapped",
                details={"entity_type": short_type_name(entity_type)},
            ) from exc

    def enum_fields(self, entity_type: type) -> dict[str, type | None]:
        mapper = self._mapper(entity_type)
        fields: dict[str, type | None] = {}

        for prop in mapper.column_attrs:
            for column in prop.columns:
                if isinstance(column.type, SAEnum):
                    fields[prop.key] = column.type.enum_class
                    break

        return fields

    def collection_associations(self, entity_type: type) -> dict[str, type]:
        mapper = self._mapper(entity_type)
        return {
            rel.key: rel.mapper.class_
            for rel in mapper.relationships
            if rel.uselist
        }

    def association_target_type(self, entity_type: type, field: str) -> type | None:
        mapper = self._mapper(entity_type)
        rel = mapper.relationships.get(field)
        if rel is None:
            return None
        return rel.mapper.class_


class MetadataCache:
    """Per-type cache for derived field metadata.

    Read-mostly: lookups go straight to the dict and only a miss takes
    the lock.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, type], Any] = {}
        self._lock = threading.RLock()

    def get_or_load(self, kind: str, entity_type: type, loader: Callable[[], T]) -> T:
        key = (kind, entity_type)
        try:
            return self._entries[key]
        except KeyError:
            pass

        with self._lock:
            if key not in self._entries:
                self._entries[key] = loader()
                log.debug(
                    "history_metadata_cached",
                    kind=kind,
                    entity_type=short_type_name(entity_type),
                )
            return self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class MetadataAwareClassifier(ChangeClassifier):
    """Classifier that discovers enumeration and collection fields.

    Enumeration names equal the field names, so labels read
    ``"<field>.<value>"``. Enumeration lookup needs to know which type
    is being classified; use for_entity_type() or
    classify_change_set_for() to set it.

    Example:
        classifier = MetadataAwareClassifier(SQLAlchemyMetadataProvider())
        changes = classifier.classify_change_set_for(user, change_set)
    """

    def __init__(
        self,
        provider: TypeMetadataProvider | None = None,
        ignored_fields: Sequence[str] = (),
        date_format: str | None = None,
        cache: MetadataCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        super().__init__(
            ignored_fields=ignored_fields,
            date_format=date_format,
            settings=settings,
        )
        self.provider = provider or SQLAlchemyMetadataProvider()
        if cache is None and settings.cache_metadata:
            cache = MetadataCache()
        self.cache = cache
        self._entity_type: ContextVar[type | None] = ContextVar(
            f"history_entity_type_{id(self)}", default=None
        )

    @property
    def current_entity_type(self) -> type | None:
        return self._entity_type.get()

    @contextmanager
    def for_entity_type(self, entity_type: type) -> Iterator["MetadataAwareClassifier"]:
        """Set the entity type whose enumeration fields apply.

        The previous type is restored on exit, also when classification
        raises.
        """
        token = self._entity_type.set(entity_type)
        try:
            yield self
        finally:
            self._entity_type.reset(token)

    def _load(self, kind: str, entity_type: type, loader: Callable[[], T]) -> T:
        if self.cache is None:
            return loader()
        return self.cache.get_or_load(kind, entity_type, loader)

    def enum_fields(self, entity_type: type | None = None) -> Mapping[str, str]:
        if entity_type is None:
            return {}
        return self._load(
            "enums",
            entity_type,
            lambda: {
                field: field
                for field in self.provider.enum_fields(entity_type)
                if field not in self.ignored_fields
            },
        )

    def collection_fields(self, entity_type: type | None = None) -> Sequence[str]:
        if entity_type is None:
            return ()
        return self._load(
            "collections",
            entity_type,
            lambda: tuple(
                field
                for field in self.provider.collection_associations(entity_type)
                if field not in self.ignored_fields
            ),
        )

    def defined_enums(self) -> Mapping[str, str]:
        # No type set means no enumeration fields: values fall through
        # to scalar handling.
        return self.enum_fields(self.current_entity_type)

    def classify_change_set_for(
        self,
        entity: Any,
        change_set: ChangeSet,
    ) -> list[ChangeRecord]:
        with self.for_entity_type(type(entity)):
            return self.classify_change_set(change_set, get_ignored_fields(entity))
