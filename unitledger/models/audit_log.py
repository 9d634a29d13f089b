"""Audit log model for tracking ledger events."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from unitledger.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for ledger events.

    Records who (actor_id) did what (action) to which entity (entity_type, entity_id)
    and an optional snapshot of the amounts involved (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(String(50), index=False)
    """Entity type being audited: "payment", "reversal", "credit", "billing"."""

    entity_id: Mapped[str] = mapped_column(String(255), index=False)
    """Transaction id or document key of the entity being audited."""

    action: Mapped[str] = mapped_column(String(50), index=False)
    """Action performed: "apply", "reverse", "adjust", "bill"."""

    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=False)
    """Admin or system actor. None for unattended operations."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot: {"unit_id": "U1", "cash_amount": 120231, "credit_delta": 0}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor_id={self.actor_id}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
