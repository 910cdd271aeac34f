"""Test factories for generating test data."""

from tests.factories.history import (
    HistoryEntryFactory,
    ItemFactory,
    ManagerFactory,
    RoleFactory,
    TagFactory,
    UserFactory,
)


__all__ = [
    "HistoryEntryFactory",
    "ItemFactory",
    "ManagerFactory",
    "RoleFactory",
    "TagFactory",
    "UserFactory",
]
