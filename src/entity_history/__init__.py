"""Change-auditing engine for SQLAlchemy entities."""

from entity_history.bootstrap import register_tracked_types, setup_history
from entity_history.config import Settings, get_settings


__all__ = [
    "Settings",
    "get_settings",
    "register_tracked_types",
    "setup_history",
]
