"""Ledger services: pure ledger components plus the store-backed facade."""

from unitledger.services.audit_service import AuditFact, AuditService
from unitledger.services.billing_service import BillingService, billing_transaction_id, water_charge
from unitledger.services.clock import Clock, FixedClock, SystemClock
from unitledger.services.credit_service import CreditService
from unitledger.services.db import build_engine, create_session_factory, create_tables
from unitledger.services.distribution_service import PaymentDistributor
from unitledger.services.document_store import SqlDocumentStore, credit_key, track_key
from unitledger.services.ledger_service import LedgerService
from unitledger.services.penalty_service import PenaltyCalculator, compute_penalty
from unitledger.services.period_ledger import Outstanding, PeriodLedgerService
from unitledger.services.retry import call_with_store_retry
from unitledger.services.reversal_service import ReversalEngine

__all__ = [
    "AuditFact",
    "AuditService",
    "BillingService",
    "billing_transaction_id",
    "water_charge",
    "Clock",
    "FixedClock",
    "SystemClock",
    "CreditService",
    "build_engine",
    "create_session_factory",
    "create_tables",
    "PaymentDistributor",
    "SqlDocumentStore",
    "credit_key",
    "track_key",
    "LedgerService",
    "PenaltyCalculator",
    "compute_penalty",
    "Outstanding",
    "PeriodLedgerService",
    "call_with_store_retry",
    "ReversalEngine",
]
