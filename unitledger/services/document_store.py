"""Transactional JSON document store on SQLAlchemy.

Documents are plain dicts addressed by path-like keys. ``write_transaction``
gives atomic read-modify-write over a set of keys with optimistic
concurrency: each document's ``version`` is checked when it is written back.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, TypeVar

from pydantic import BaseModel as PydanticModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from unitledger.errors import StoreConflictError, StoreError
from unitledger.models.ledger_document import LedgerDocument
from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import CreditAccount, TrackLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

Documents = dict[str, dict[str, Any] | None]


def track_key(client_id: str, unit_id: str, track: Track | str) -> str:
    """Key of a unit's billing periods for one track."""
    return f"clients/{client_id}/units/{unit_id}/tracks/{Track(track).value}"


def credit_key(client_id: str, unit_id: str, pool_id: str) -> str:
    """Key of a unit's credit account for one pool."""
    return f"clients/{client_id}/units/{unit_id}/credit/{pool_id}"


def load_track_ledger(doc: dict[str, Any] | None, unit_id: str, track: Track | str) -> TrackLedger:
    """Deserialize a track document, or start an empty ledger."""
    if doc is None:
        return TrackLedger(unit_id=unit_id, track=Track(track))
    return TrackLedger.model_validate(doc)


def load_credit_account(doc: dict[str, Any] | None, unit_id: str, pool_id: str) -> CreditAccount:
    """Deserialize a credit document, or start an empty account."""
    if doc is None:
        return CreditAccount(unit_id=unit_id, pool_id=pool_id)
    return CreditAccount.model_validate(doc)


def dump_document(model: PydanticModel) -> dict[str, Any]:
    """Serialize a ledger schema into a JSON-safe document."""
    return model.model_dump(mode="json")


class SqlDocumentStore:
    """Document store backed by the ``ledger_documents`` table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def read_document(self, key: str) -> dict[str, Any] | None:
        """Read one document, or None if it does not exist."""
        with self.session_factory() as session:
            payload = session.execute(
                select(LedgerDocument.payload).where(LedgerDocument.key == key)
            ).scalar_one_or_none()
        return copy.deepcopy(payload) if payload is not None else None

    def list_keys(self, prefix: str) -> list[str]:
        """List document keys starting with a prefix, sorted."""
        with self.session_factory() as session:
            keys = session.execute(
                select(LedgerDocument.key).where(LedgerDocument.key.startswith(prefix, autoescape=True))
            ).scalars()
            return sorted(keys)

    def write_transaction(self, keys: Iterable[str], fn: Callable[[Documents], T]) -> T:
        """Run a read-modify-write over a set of documents atomically.

        Args:
            keys: Keys to load; missing documents appear as None
            fn: Callback mutating the documents dict in place (assigning new
                dicts to missing keys creates them) and returning a result

        Returns:
            Whatever ``fn`` returned

        Raises:
            StoreConflictError: If a document changed since it was read
            StoreError: If ``fn`` tries to write a key it did not load
            Exception: Anything ``fn`` raises; nothing is written in that case
        """
        keys = list(dict.fromkeys(keys))
        session = self.session_factory()
        try:
            rows = session.execute(
                select(LedgerDocument.key, LedgerDocument.payload, LedgerDocument.version).where(
                    LedgerDocument.key.in_(keys)
                )
            ).all()
            originals = {row.key: row.payload for row in rows}
            versions = {row.key: row.version for row in rows}
            docs: Documents = {key: copy.deepcopy(originals.get(key)) for key in keys}

            result = fn(docs)

            unknown = set(docs) - set(keys)
            if unknown:
                raise StoreError(f"Transaction wrote keys it did not load: {sorted(unknown)}")

            now = datetime.now(timezone.utc)
            written = 0
            for key in keys:
                doc = docs[key]
                if doc is None:
                    continue
                if key not in versions:
                    session.add(LedgerDocument(key=key, payload=doc, version=1))
                    written += 1
                    continue
                if doc == originals[key]:
                    continue
                outcome = session.execute(
                    update(LedgerDocument)
                    .where(LedgerDocument.key == key, LedgerDocument.version == versions[key])
                    .values(payload=doc, version=versions[key] + 1, updated_at=now)
                )
                if outcome.rowcount != 1:
                    raise StoreConflictError(f"Document {key} changed since version {versions[key]}")
                written += 1

            session.commit()
            logger.debug("Committed %d of %d document(s)", written, len(keys))
            return result
        except IntegrityError as e:
            session.rollback()
            raise StoreConflictError(f"Concurrent creation of a document in {keys}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


__all__ = [
    "Documents",
    "track_key",
    "credit_key",
    "load_track_ledger",
    "load_credit_account",
    "dump_document",
    "SqlDocumentStore",
]
