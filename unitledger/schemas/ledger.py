"""Pydantic schemas for ledger documents: billing periods, credit accounts, distributions.

All money is integer minor currency units (centavos). These shapes are what the
document store persists, via ``model_dump(mode="json")`` / ``model_validate``.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from unitledger.schemas.client_config import Track


class PeriodStatus(str, Enum):
    """Payment status of a billing period."""

    UNBILLED = "unbilled"
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PeriodKey(BaseModel):
    """Identity of a billing period within a unit: fiscal year, fiscal month, track."""

    fiscal_year: int
    fiscal_month: int = Field(..., ge=0, le=11)
    track: Track

    model_config = ConfigDict(frozen=True)

    @property
    def label(self) -> str:
        """Period label in "YYYY-MM" form with a 0-based fiscal month."""
        return f"{self.fiscal_year}-{self.fiscal_month:02d}"

    def __str__(self) -> str:
        return f"{self.track.value}:{self.label}"


class BillingPeriod(BaseModel):
    """One unit x track x fiscal month billing record.

    Penalty is never stored: only the money actually collected for it
    (``penalty_paid``). ``settled_on`` is the date the period became paid and
    freezes penalty accrual from then on.
    """

    fiscal_year: int
    fiscal_month: int = Field(..., ge=0, le=11)
    track: Track
    base_charge: int = Field(..., ge=0)
    due_date: date
    base_paid: int = Field(0, ge=0)
    penalty_paid: int = Field(0, ge=0)
    status: PeriodStatus = PeriodStatus.UNPAID
    last_payment_ref: str | None = None
    billed_on: date | None = None
    settled_on: date | None = None

    @model_validator(mode="after")
    def _base_paid_within_charge(self) -> "BillingPeriod":
        if self.base_paid > self.base_charge:
            raise ValueError(
                f"base_paid {self.base_paid} exceeds base_charge {self.base_charge} "
                f"for {self.fiscal_year}-{self.fiscal_month:02d}"
            )
        return self

    @property
    def key(self) -> PeriodKey:
        return PeriodKey(fiscal_year=self.fiscal_year, fiscal_month=self.fiscal_month, track=self.track)

    @property
    def is_billed(self) -> bool:
        return self.billed_on is not None


class TrackLedger(BaseModel):
    """All billing periods of one unit for one track (one store document)."""

    unit_id: str
    track: Track
    periods: list[BillingPeriod] = Field(default_factory=list)

    def find(self, fiscal_year: int, fiscal_month: int) -> BillingPeriod | None:
        """Get the period for a fiscal year/month, or None."""
        for period in self.periods:
            if period.fiscal_year == fiscal_year and period.fiscal_month == fiscal_month:
                return period
        return None

    def add_period(self, period: BillingPeriod) -> None:
        """Add a period keeping (fiscal_year, fiscal_month) order."""
        self.periods.append(period)
        self.periods.sort(key=lambda p: (p.fiscal_year, p.fiscal_month))


class CreditMovementReason(str, Enum):
    """Why a credit balance moved."""

    PAYMENT_OVERFLOW = "payment_overflow"
    APPLIED_TO_CHARGE = "applied_to_charge"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    REVERSAL = "reversal"


class CreditMovement(BaseModel):
    """Immutable credit history entry."""

    id: str
    timestamp: datetime
    transaction_id: str
    delta: int
    reason: CreditMovementReason
    balance_after: int
    track: Track | None = None
    note: str | None = None

    model_config = ConfigDict(frozen=True)


class CreditAccount(BaseModel):
    """Running credit balance of a unit's credit pool plus its append-only history."""

    unit_id: str
    pool_id: str
    balance: int = Field(0, ge=0)
    history: list[CreditMovement] = Field(default_factory=list)

    def movements_for(self, transaction_id: str) -> list[CreditMovement]:
        """Get all movements tagged with a transaction id, in history order."""
        return [m for m in self.history if m.transaction_id == transaction_id]

    def replayed_balance(self) -> int:
        """Balance obtained by replaying history from zero."""
        return sum(m.delta for m in self.history)


class PaymentPolicy(BaseModel):
    """Policy flags for one payment application."""

    use_credit_to_cover_shortfall: bool = False
    """Draw on existing credit when cash does not cover a targeted period."""

    model_config = ConfigDict(frozen=True)


class DistributionLine(BaseModel):
    """What one payment did to one billing period.

    The ``previous_*`` fields capture the period before the payment. A reversal
    restores status, reference and settled_on from them only while the paid
    amounts are back at ``previous_base_paid``/``previous_penalty_paid``.
    """

    period_key: PeriodKey
    base_applied: int = Field(0, ge=0)
    penalty_applied: int = Field(0, ge=0)
    credit_applied: int = Field(0, ge=0)
    previous_status: PeriodStatus
    previous_payment_ref: str | None = None
    previous_settled_on: date | None = None
    previous_base_paid: int | None = Field(None, ge=0)
    previous_penalty_paid: int | None = Field(None, ge=0)

    @property
    def total_applied(self) -> int:
        return self.base_applied + self.penalty_applied


class DistributionResult(BaseModel):
    """Distribution plan of one payment, persisted with its originating transaction.

    ``credit_delta`` is the net effect on the credit balance: positive when
    overflow became credit, negative when existing credit was consumed.
    """

    transaction_id: str
    unit_id: str
    pool_id: str
    cash_amount: int = Field(..., ge=0)
    as_of: date
    lines: list[DistributionLine] = Field(default_factory=list)
    credit_delta: int = 0

    @property
    def total_base_applied(self) -> int:
        return sum(line.base_applied for line in self.lines)

    @property
    def total_penalty_applied(self) -> int:
        return sum(line.penalty_applied for line in self.lines)

    @property
    def total_applied(self) -> int:
        return self.total_base_applied + self.total_penalty_applied

    @property
    def credit_used(self) -> int:
        return sum(line.credit_applied for line in self.lines)

    @property
    def credit_added(self) -> int:
        return self.credit_delta + self.credit_used

    @property
    def tracks(self) -> list[Track]:
        """Tracks touched by this distribution, in first-touched order."""
        seen: list[Track] = []
        for line in self.lines:
            if line.period_key.track not in seen:
                seen.append(line.period_key.track)
        return seen

    @property
    def is_empty(self) -> bool:
        return not self.lines and self.credit_delta == 0


class ReversalResult(BaseModel):
    """Outcome of reversing one stored distribution."""

    transaction_id: str
    unit_id: str
    lines_reversed: int = 0
    base_reversed: int = 0
    penalty_reversed: int = 0
    credit_delta_reversed: int = 0
    already_reversed: bool = False


__all__ = [
    "PeriodStatus",
    "PeriodKey",
    "BillingPeriod",
    "TrackLedger",
    "CreditMovementReason",
    "CreditMovement",
    "CreditAccount",
    "PaymentPolicy",
    "DistributionLine",
    "DistributionResult",
    "ReversalResult",
]
