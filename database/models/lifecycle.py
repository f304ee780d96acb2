"""
Lifecycle (soft-delete) value type shared by every persisted record.

Records are never hard-deleted. Instead of repeating ``is_deleted`` checks
per table, each model mixes in ``LifecycleMixin`` and queries filter with
``Model.live()``.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Boolean, BigInteger, DateTime, true
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.elements import ColumnElement

from core.utils.datetime import now


@dataclass(frozen=True)
class Lifecycle:
    """Snapshot of a record's soft-delete state."""

    active: bool
    deleted_at: datetime | None = None
    deleted_by: int | None = None


class LifecycleMixin:
    """Soft-delete columns plus explicit helpers to read and change them."""

    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true(), index=True
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[int | None] = mapped_column(BigInteger)

    @property
    def lifecycle(self) -> Lifecycle:
        return Lifecycle(
            active=self.is_active,
            deleted_at=self.deleted_at,
            deleted_by=self.deleted_by,
        )

    def soft_delete(self, by: int | None = None, at: datetime | None = None) -> None:
        """Mark the record deleted. Callers still own the commit."""
        self.is_active = False
        self.deleted_at = at or now()
        self.deleted_by = by

    def restore(self) -> None:
        self.is_active = True
        self.deleted_at = None
        self.deleted_by = None

    @classmethod
    def live(cls) -> ColumnElement[bool]:
        """Default filter criterion: rows that have not been soft-deleted."""
        return cls.is_active.is_(True)
