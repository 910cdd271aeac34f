"""One-call wiring of the history engine.

Example:
    registry = HistoryHandlerRegistry()
    register_tracked_types(registry, User, Role)
    setup_history(registry, SessionLocal)
"""

from typing import Any

import structlog
from sqlalchemy.orm import Session

from entity_history.config import Settings, get_settings
from entity_history.core.logging import configure_logging
from entity_history.history.listener import HistoryListener
from entity_history.history.metadata import (
    MetadataAwareClassifier,
    TypeMetadataProvider,
)
from entity_history.history.registry import HistoryHandlerRegistry


log = structlog.get_logger()


def register_tracked_types(
    registry: HistoryHandlerRegistry,
    *entity_types: type,
    provider: TypeMetadataProvider | None = None,
    ignored_fields: tuple[str, ...] = (),
    settings: Settings | None = None,
) -> MetadataAwareClassifier:
    """Register default handlers for entity types, sharing one detector.

    Returns:
        The metadata-aware classifier used by all registered extractors
    """
    classifier = MetadataAwareClassifier(
        provider,
        ignored_fields=ignored_fields,
        settings=settings,
    )
    for entity_type in entity_types:
        registry.register(entity_type, classifier)
    return classifier


def setup_history(
    registry: HistoryHandlerRegistry,
    target: Any = Session,
    settings: Settings | None = None,
    configure_logs: bool = True,
) -> HistoryListener:
    """Install a history listener on a Session class, sessionmaker or session.

    Args:
        registry: Handlers for the tracked entity types
        target: Where to listen for session events
        settings: Engine settings, defaults to the environment
        configure_logs: Whether to configure structlog as well

    Returns:
        The installed listener (call ``uninstall`` to detach it)
    """
    settings = settings or get_settings()
    if configure_logs:
        configure_logging(settings)

    listener = HistoryListener(registry, settings=settings)
    listener.install(target)

    log.info(
        "history_setup_complete",
        environment=settings.environment,
        strict=settings.strict,
    )
    return listener
