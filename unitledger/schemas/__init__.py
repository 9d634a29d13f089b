"""Pydantic schemas for ledger documents, configuration and statements."""

from unitledger.schemas.client_config import ClientConfig, Track, TrackConfig
from unitledger.schemas.ledger import (
    BillingPeriod,
    CreditAccount,
    CreditMovement,
    CreditMovementReason,
    DistributionLine,
    DistributionResult,
    PaymentPolicy,
    PeriodKey,
    PeriodStatus,
    ReversalResult,
    TrackLedger,
)
from unitledger.schemas.statements import (
    BillingRunResult,
    OutstandingSummary,
    PeriodStatement,
    YearSummary,
)

__all__ = [
    "ClientConfig",
    "Track",
    "TrackConfig",
    "BillingPeriod",
    "CreditAccount",
    "CreditMovement",
    "CreditMovementReason",
    "DistributionLine",
    "DistributionResult",
    "PaymentPolicy",
    "PeriodKey",
    "PeriodStatus",
    "ReversalResult",
    "TrackLedger",
    "BillingRunResult",
    "OutstandingSummary",
    "PeriodStatement",
    "YearSummary",
]
