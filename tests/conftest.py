"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator, Generator

import pytest
from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from entity_history.bootstrap import register_tracked_types
from entity_history.config import Settings
from entity_history.core.database import Base
from entity_history.history.context import clear_history_context
from entity_history.history.listener import HistoryListener
from entity_history.history.metadata import MetadataAwareClassifier
from entity_history.history.models import HistoryEntry
from entity_history.history.registry import HistoryHandlerRegistry
from tests.models import Manager, Role, User


@pytest.fixture
def settings() -> Settings:
    """Settings for tests: strict, so auditing failures surface."""
    return Settings(environment="test", strict=True, _env_file=None)


@pytest.fixture
def lenient_settings() -> Settings:
    """Settings with the production failure policy (log and continue)."""
    return Settings(environment="test", strict=False, _env_file=None)


@pytest.fixture(autouse=True)
def reset_history_context() -> Generator[None, None, None]:
    """Ensure no actor leaks between tests."""
    clear_history_context()
    yield
    clear_history_context()


# ============================================================
# Handler Fixtures
# ============================================================


@pytest.fixture
def registry(settings: Settings) -> HistoryHandlerRegistry:
    """Registry with default handlers for User, Manager and Role."""
    registry = HistoryHandlerRegistry()
    register_tracked_types(registry, User, Manager, Role, settings=settings)
    return registry


@pytest.fixture
def classifier(settings: Settings) -> MetadataAwareClassifier:
    return MetadataAwareClassifier(settings=settings)


# ============================================================
# Database Fixtures
# ============================================================


def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine with all tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(
    engine: Engine,
    registry: HistoryHandlerRegistry,
    settings: Settings,
) -> Generator[sessionmaker[Session], None, None]:
    """Session factory with the history listener installed."""
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    listener = HistoryListener(registry, settings=settings)
    listener.install(factory)

    yield factory

    listener.uninstall(factory)


@pytest.fixture
def session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture
def expiring_session(
    engine: Engine,
    registry: HistoryHandlerRegistry,
    settings: Settings,
) -> Generator[Session, None, None]:
    """Session with SQLAlchemy's defaults, expiring everything on commit."""
    factory = sessionmaker(bind=engine)
    listener = HistoryListener(registry, settings=settings)
    listener.install(factory)

    with factory() as session:
        yield session

    listener.uninstall(factory)


@pytest.fixture
def history_of():
    """Return the stored history entries of an entity, oldest first."""

    def _history_of(session: Session, entity) -> list[HistoryEntry]:
        statement = (
            select(HistoryEntry)
            .where(
                HistoryEntry.subject_type == type(entity).__name__,
                HistoryEntry.subject_id == str(entity.id),
            )
            .order_by(HistoryEntry.created_at)
        )
        return list(session.scalars(statement).all())

    return _history_of


@pytest.fixture
async def async_engine():
    """In-memory aiosqlite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db(
    async_engine,
    registry: HistoryHandlerRegistry,
    settings: Settings,
) -> AsyncGenerator[AsyncSession, None]:
    """Async session whose underlying sync session records history."""
    factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    listener = HistoryListener(registry, settings=settings)

    async with factory() as session:
        listener.install(session.sync_session)
        yield session
        listener.uninstall(session.sync_session)
