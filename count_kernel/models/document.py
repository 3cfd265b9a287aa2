"""
Module: count_kernel.models.document
Responsibility: ORM persistence for the two whole JSON documents (facility
    configuration and count history) of each facility.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one row per (facility_id, kind): the pair is unique.
    - ``body`` holds the camelCase document exactly as the JSON store writes it.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from count_kernel.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StoredDocument(Base):
    """One persisted document.  ``kind`` is ``facility`` or ``history``."""

    __tablename__ = "stored_documents"
    __table_args__ = (
        UniqueConstraint("facility_id", "kind", name="uq_stored_documents_facility_kind"),
    )

    facility_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StoredDocument {self.facility_id}/{self.kind}>"
