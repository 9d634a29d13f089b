"""Late penalty calculation.

Penalty Rules:
- Periods fall due on their due date
- Grace period: configurable days (default 10); no penalty up to and including the last grace day
- After grace: every started 30-day block counts as one month overdue
- Compounding (default): Penalty = Base x ((1 + rate)^months - 1)
- Simple: Penalty = Base x rate x months

Compounding example (10% rate, 1000.00 base):
- Month 1: 100.00
- Month 2: 210.00
- Month 3: 331.00

Penalty is recomputed on every read and never persisted; only money actually
collected for penalties is stored on the period.
"""

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from unitledger.errors import InvalidAmountError
from unitledger.schemas.client_config import TrackConfig
from unitledger.schemas.ledger import BillingPeriod
from unitledger.services.fiscal_calendar import days_overdue

logger = logging.getLogger(__name__)

DAYS_PER_PENALTY_MONTH = 30


def months_overdue(overdue_days: int, grace_period_days: int) -> int:
    """Count penalty months: started 30-day blocks after the grace period.

    Returns:
        0 within grace, otherwise at least 1
    """
    past_grace = overdue_days - grace_period_days
    if past_grace <= 0:
        return 0
    return -(-past_grace // DAYS_PER_PENALTY_MONTH)


def compute_penalty(
    base_charge: int,
    penalty_rate: Decimal | str | float,
    overdue_days: int,
    compound: bool = True,
    grace_period_days: int = 10,
) -> int:
    """Compute the penalty owed on a base charge after a number of overdue days.

    Args:
        base_charge: Base charge in minor currency units
        penalty_rate: Monthly penalty rate (0.10 = 10%)
        overdue_days: Days elapsed since the due date
        compound: Compound monthly (True) or simple interest (False)
        grace_period_days: Days after the due date without penalty

    Returns:
        Penalty in minor currency units, rounded half-up, never negative

    Raises:
        InvalidAmountError: If base_charge or penalty_rate is negative
    """
    if base_charge < 0:
        raise InvalidAmountError(f"Base charge cannot be negative: {base_charge}")

    rate = Decimal(str(penalty_rate))
    if rate < 0:
        raise InvalidAmountError(f"Penalty rate cannot be negative: {penalty_rate}")

    if overdue_days <= 0 or overdue_days <= grace_period_days or base_charge == 0 or rate == 0:
        return 0

    months = months_overdue(overdue_days, grace_period_days)

    if compound:
        factor = (Decimal(1) + rate) ** months - Decimal(1)
    else:
        factor = rate * months

    penalty = (Decimal(base_charge) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, int(penalty))


class PenaltyCalculator:
    """Penalty calculator bound to one track's penalty rules."""

    def __init__(self, track_config: TrackConfig):
        """Initialize with track configuration.

        Args:
            track_config: Penalty rate, grace period and compounding mode
        """
        self.config = track_config

    def penalty_for(self, period: BillingPeriod, as_of: date) -> int:
        """Total penalty a period carries as of a date.

        Paid periods stop accruing on the day they were settled, and unbilled
        periods never accrue.
        """
        if not period.is_billed:
            return 0
        effective = period.settled_on if period.settled_on and period.settled_on < as_of else as_of
        return compute_penalty(
            period.base_charge,
            self.config.penalty_rate,
            days_overdue(effective, period.due_date),
            compound=self.config.compound,
            grace_period_days=self.config.grace_period_days,
        )


__all__ = ["DAYS_PER_PENALTY_MONTH", "months_overdue", "compute_penalty", "PenaltyCalculator"]
