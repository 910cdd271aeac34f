"""Read access to recorded history.

Usage:
    repository = HistoryRepository(session)
    entries = await repository.get_history_by_entity(user)
"""

from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from entity_history.core.utils.text import short_type_name
from entity_history.history.models import HistoryEntry


class HistoryRepository:
    """Queries history entries of a subject, newest first."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _subject_filter(
        self,
        statement: Select[Any],
        subject_type: str,
        subject_id: Any,
    ) -> Select[Any]:
        return statement.where(
            HistoryEntry.subject_type == subject_type,
            HistoryEntry.subject_id == str(subject_id),
        )

    async def get_history(
        self,
        subject_type: str,
        subject_id: Any,
        limit: int | None = None,
    ) -> list[HistoryEntry]:
        """Get the history of a subject given its type name and identity.

        Args:
            subject_type: Short type name of the subject (e.g. "User")
            subject_id: Identity of the subject
            limit: Maximum number of entries to return

        Returns:
            Entries ordered by creation time, newest first
        """
        statement = self._subject_filter(
            select(HistoryEntry), subject_type, subject_id
        ).order_by(HistoryEntry.created_at.desc())

        if limit is not None:
            statement = statement.limit(limit)

        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def get_history_by_entity(
        self,
        entity: Any,
        limit: int | None = None,
    ) -> list[HistoryEntry]:
        """Get the history of an entity instance, newest first."""
        return await self.get_history(short_type_name(entity), entity.id, limit=limit)

    async def count_for_entity(self, entity: Any) -> int:
        """Count the history entries of an entity instance."""
        statement = self._subject_filter(
            select(func.count()).select_from(HistoryEntry),
            short_type_name(entity),
            entity.id,
        )
        result = await self.session.execute(statement)
        return result.scalar_one()
