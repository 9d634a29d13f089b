"""Pydantic schemas for per-client billing configuration."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Track(str, Enum):
    """Independent billing categories sharing a unit's identity."""

    HOA_DUES = "hoa_dues"
    """Monthly association dues (prepaid model: future months may be paid)."""

    WATER_BILLS = "water_bills"
    """Metered water bills (postpaid model: no future payments)."""


class TrackConfig(BaseModel):
    """Penalty and payment rules for one billing track."""

    penalty_rate: Decimal = Field(Decimal("0.10"), ge=0, description="Monthly penalty rate")
    grace_period_days: int = Field(10, ge=0, description="Days after due date before penalties accrue")
    compound: bool = Field(True, description="Compound penalties monthly instead of simple interest")
    due_day: int = Field(1, ge=1, le=31, description="Day of month the period falls due")
    allow_prepayment: bool = Field(False, description="Payments may settle periods not yet due")
    credit_pool: str = Field("shared", description="Credit pool the track draws from and pays into")
    rate_per_m3: int = Field(5000, ge=0, description="Metered tracks: charge per cubic meter, in minor units")
    minimum_charge: int = Field(0, ge=0, description="Metered tracks: floor of a billed charge, in minor units")

    model_config = ConfigDict(frozen=True)


class ClientConfig(BaseModel):
    """Billing configuration of one client (tenant)."""

    client_id: str = "default"
    fiscal_year_start_month: int = Field(1, ge=1, le=12)
    tracks: dict[Track, TrackConfig] = Field(
        default_factory=lambda: {
            Track.HOA_DUES: TrackConfig(allow_prepayment=True),
            Track.WATER_BILLS: TrackConfig(),
        }
    )

    model_config = ConfigDict(frozen=True)

    def track(self, track: Track | str) -> TrackConfig:
        """Get configuration for a track, falling back to defaults."""
        return self.tracks.get(Track(track), TrackConfig())

    def pool_for(self, track: Track | str) -> str:
        """Get the credit pool id a track belongs to."""
        return self.track(track).credit_pool


__all__ = ["Track", "TrackConfig", "ClientConfig"]
