"""Registry resolving the extractor and factory of an entity type."""

import threading
from collections.abc import Iterable
from typing import Any, TypeVar

import structlog

from entity_history.core.errors import AmbiguousHandlerError, HandlerNotFoundError
from entity_history.core.utils.text import short_type_name
from entity_history.history.classifier import ChangeClassifier
from entity_history.history.extractor import ChangeExtractor
from entity_history.history.factory import HistoryFactory


log = structlog.get_logger()

H = TypeVar("H", ChangeExtractor, HistoryFactory)


class HistoryHandlerRegistry:
    """Maps entity types to exactly one extractor and one factory.

    Handlers are either registered for a type up front with register(),
    or added as candidates that claim types through ``supports()``. A
    candidate lookup happens once per concrete type; the result is
    cached.

    Example:
        registry = HistoryHandlerRegistry()
        registry.register(User, MetadataAwareClassifier())
    """

    def __init__(
        self,
        extractors: Iterable[ChangeExtractor] = (),
        factories: Iterable[HistoryFactory] = (),
    ) -> None:
        self._extractors: list[ChangeExtractor] = list(extractors)
        self._factories: list[HistoryFactory] = list(factories)
        self._extractor_by_type: dict[type, ChangeExtractor] = {}
        self._factory_by_type: dict[type, HistoryFactory] = {}
        self._extractor_cache: dict[type, ChangeExtractor] = {}
        self._factory_cache: dict[type, HistoryFactory] = {}
        self._lock = threading.RLock()

    def add_extractor(self, extractor: ChangeExtractor) -> None:
        with self._lock:
            self._extractors.append(extractor)
            self._extractor_cache.clear()

    def add_factory(self, factory: HistoryFactory) -> None:
        with self._lock:
            self._factories.append(factory)
            self._factory_cache.clear()

    def register(
        self,
        entity_type: type,
        classifier: ChangeClassifier | None = None,
        *,
        extractor: ChangeExtractor | None = None,
        factory: HistoryFactory | None = None,
    ) -> tuple[ChangeExtractor, HistoryFactory]:
        """Bind an extractor and a factory to one concrete entity type.

        Missing handlers are built with defaults: a ChangeExtractor over
        the given classifier and a plain HistoryFactory.

        Raises:
            AmbiguousHandlerError: If the type is already registered
        """
        if extractor is None:
            extractor = ChangeExtractor(
                classifier or ChangeClassifier(), entity_types=(entity_type,)
            )
        if factory is None:
            factory = HistoryFactory(entity_types=(entity_type,))

        name = short_type_name(entity_type)
        with self._lock:
            if entity_type in self._extractor_by_type:
                raise AmbiguousHandlerError(
                    entity_type=name,
                    handler_kind="extractor",
                    candidates=[
                        repr(self._extractor_by_type[entity_type]),
                        repr(extractor),
                    ],
                )
            if entity_type in self._factory_by_type:
                raise AmbiguousHandlerError(
                    entity_type=name,
                    handler_kind="factory",
                    candidates=[
                        repr(self._factory_by_type[entity_type]),
                        repr(factory),
                    ],
                )

            self._extractor_by_type[entity_type] = extractor
            self._factory_by_type[entity_type] = factory

        log.debug("history_handlers_registered", entity_type=name)
        return extractor, factory

    def get_extractor(self, entity: Any) -> ChangeExtractor:
        """Resolve the extractor of an entity's type.

        Raises:
            HandlerNotFoundError: If no extractor supports the type
            AmbiguousHandlerError: If more than one does
        """
        return self._resolve(
            entity,
            "extractor",
            self._extractors,
            self._extractor_by_type,
            self._extractor_cache,
        )

    def get_factory(self, entity: Any) -> HistoryFactory:
        """Resolve the factory of an entity's type.

        Raises:
            HandlerNotFoundError: If no factory supports the type
            AmbiguousHandlerError: If more than one does
        """
        return self._resolve(
            entity,
            "factory",
            self._factories,
            self._factory_by_type,
            self._factory_cache,
        )

    def _resolve(
        self,
        entity: Any,
        kind: str,
        candidates: list[H],
        registered: dict[type, H],
        cache: dict[type, H],
    ) -> H:
        entity_type = type(entity)
        handler = registered.get(entity_type) or cache.get(entity_type)
        if handler is not None:
            return handler

        name = short_type_name(entity_type)
        with self._lock:
            handler = cache.get(entity_type)
            if handler is not None:
                return handler

            matches = [c for c in candidates if c.supports(entity)]

            if not matches:
                log.error("history_handler_not_found", entity_type=name, kind=kind)
                if kind == "extractor":
                    raise HandlerNotFoundError.extractor_not_found(name)
                raise HandlerNotFoundError.factory_not_found(name)

            if len(matches) > 1:
                log.error(
                    "history_handler_ambiguous",
                    entity_type=name,
                    kind=kind,
                    count=len(matches),
                )
                raise AmbiguousHandlerError(
                    entity_type=name,
                    handler_kind=kind,
                    candidates=[repr(match) for match in matches],
                )

            cache[entity_type] = matches[0]
            return matches[0]
