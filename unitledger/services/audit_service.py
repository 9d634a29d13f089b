"""Audit service for recording ledger events."""

import logging
from typing import Any

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from unitledger.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditFact(BaseModel):
    """One auditable ledger event."""

    entity_type: str
    entity_id: str
    action: str
    actor_id: str | None = None
    changes: dict[str, Any] | None = None


class AuditService:
    """Fire-and-forget audit sink.

    Facts are written in their own session after the ledger transaction has
    committed. A failing write is logged and dropped.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Add an audit log entry to an open session (caller commits)."""
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=changes,
        )
        db.add(audit)
        return audit

    def record(self, fact: AuditFact) -> bool:
        """Persist an audit fact.

        Returns:
            True if written, False if the write failed (never raises on database errors)
        """
        try:
            with self.session_factory() as session:
                self.log(
                    session,
                    fact.entity_type,
                    fact.entity_id,
                    fact.action,
                    actor_id=fact.actor_id,
                    changes=fact.changes,
                )
                session.commit()
            return True
        except SQLAlchemyError as e:
            logger.warning(
                "Audit write failed for %s %s/%s: %s", fact.action, fact.entity_type, fact.entity_id, e
            )
            return False


__all__ = ["AuditFact", "AuditService"]
