"""History entry database model.

One row per audited event on one subject entity. The changes column
holds the ordered list of change records in their storage shape.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, validates

from entity_history.core.constants import (
    MAX_ACTOR_ID_LENGTH,
    MAX_REQUEST_ID_LENGTH,
    MAX_SEVERITY_LENGTH,
    MAX_SUBJECT_ID_LENGTH,
    MAX_SUBJECT_TYPE_LENGTH,
)
from entity_history.core.database.base import Base, UUIDMixin
from entity_history.history.enums import Severity
from entity_history.history.schemas import ChangeRecord, deserialize_changes


def utc_now() -> datetime:
    return datetime.now(UTC)


class HistoryEntry(Base, UUIDMixin):
    """Audit record of one event on one subject entity.

    Entries are append-only: they are never updated after being written.

    Attributes:
        subject_type: Short type name of the audited entity
        subject_id: Identity of the audited entity
        actor_id: Who caused the change (None for anonymous or system changes)
        request_id: Correlation ID of the request that caused the change
        message: Optional free-text message
        severity: Importance of the entry
        changes: Ordered change records in storage shape
        created_at: When the entry was constructed
    """

    __tablename__ = "history_entries"
    __table_args__ = (
        Index("ix_history_entries_subject", "subject_type", "subject_id"),
    )

    # Subject
    subject_type: Mapped[str] = mapped_column(
        String(MAX_SUBJECT_TYPE_LENGTH),
        nullable=False,
    )
    subject_id: Mapped[str] = mapped_column(
        String(MAX_SUBJECT_ID_LENGTH),
        nullable=False,
    )

    # Context
    actor_id: Mapped[str | None] = mapped_column(
        String(MAX_ACTOR_ID_LENGTH),
        nullable=True,
        index=True,
    )
    request_id: Mapped[str | None] = mapped_column(
        String(MAX_REQUEST_ID_LENGTH),
        nullable=True,
    )

    # Data
    message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    severity: Mapped[Severity] = mapped_column(
        SAEnum(
            Severity,
            native_enum=False,
            length=MAX_SEVERITY_LENGTH,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=Severity.LOW,
    )
    changes: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=list,
    )

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True,
    )

    @validates("message")
    def _empty_message_is_none(self, key: str, value: str | None) -> str | None:
        return value or None

    def change_records(self) -> list[ChangeRecord]:
        """Typed change records rebuilt from the stored JSON."""
        return deserialize_changes(self.changes or [])

    def __repr__(self) -> str:
        return (
            f"<HistoryEntry(id={self.id}, subject_type={self.subject_type}, "
            f"subject_id={self.subject_id}, changes={len(self.changes or [])})>"
        )
