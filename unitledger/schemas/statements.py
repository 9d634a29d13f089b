"""Read-side schemas: outstanding statements, year summaries, billing run results."""

from datetime import date

from pydantic import BaseModel, Field

from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import BillingPeriod, DistributionResult, PeriodKey


class PeriodStatement(BaseModel):
    """A billing period with what it owes as of a date."""

    period: BillingPeriod
    days_overdue: int
    base_owed: int
    penalty_owed: int

    @property
    def total_owed(self) -> int:
        return self.base_owed + self.penalty_owed


class OutstandingSummary(BaseModel):
    """What a unit owes on one track, plus its credit balance."""

    unit_id: str
    track: Track
    as_of: date
    periods: list[PeriodStatement] = Field(default_factory=list)
    credit_balance: int = 0

    @property
    def total_owed(self) -> int:
        return sum(p.total_owed for p in self.periods)

    @property
    def net_owed(self) -> int:
        """Amount owed after subtracting available credit (never below zero)."""
        return max(0, self.total_owed - self.credit_balance)


class YearSummary(BaseModel):
    """Fiscal year totals for one unit and track."""

    unit_id: str
    track: Track
    fiscal_year: int
    as_of: date
    total_charged: int = 0
    base_paid: int = 0
    penalty_paid: int = 0
    base_owed: int = 0
    penalty_owed: int = 0
    paid_months: list[int] = Field(default_factory=list)
    unpaid_months: list[int] = Field(default_factory=list)
    next_period_due: PeriodKey | None = None
    credit_balance: int = 0


class BillingRunResult(BaseModel):
    """Outcome of billing one fiscal month across units."""

    track: Track
    fiscal_year: int
    fiscal_month: int
    billed_units: list[str] = Field(default_factory=list)
    skipped_units: list[str] = Field(default_factory=list)
    no_charge_units: list[str] = Field(default_factory=list)
    credit_distributions: dict[str, DistributionResult] = Field(default_factory=dict)


__all__ = ["PeriodStatement", "OutstandingSummary", "YearSummary", "BillingRunResult"]
