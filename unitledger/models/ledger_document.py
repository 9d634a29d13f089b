"""Ledger document ORM model backing the transactional document store."""

from typing import Any

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from unitledger.models import Base, BaseModel


class LedgerDocument(Base, BaseModel):
    """One opaque JSON document addressed by a path-like key.

    A unit's billing periods for one track live in one document, and its
    credit account in another. ``version`` is bumped on every write and
    checked on update, which gives optimistic concurrency per document.
    """

    __tablename__ = "ledger_documents"

    key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Document key (e.g., 'clients/acme/units/U1/tracks/hoa_dues')",
    )

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Serialized ledger document",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Incremented on each committed write",
    )

    __table_args__ = (Index("idx_ledger_document_key", "key", unique=True),)

    def __repr__(self) -> str:
        return f"<LedgerDocument(id={self.id}, key={self.key!r}, version={self.version})>"


__all__ = ["LedgerDocument"]
