"""Declarative base for history tables and tracked models."""

from uuid import UUID, uuid4

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UUIDMixin:
    """Mixin that adds a client-generated UUID primary key.

    Because the default runs in Python, the history listener can assign
    the key before the INSERT and reference the entity in the same flush.
    """

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
