"""Ledger configuration from environment variables and an optional .env file."""

from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from unitledger.schemas.client_config import ClientConfig, Track, TrackConfig


class Settings(BaseSettings):
    """Ledger settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(default="sqlite:///./unitledger.db", description="SQLAlchemy database URL")
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/ledger.log", description="Log file path")

    # Tenant
    client_id: str = Field(default="default", description="Client whose ledger documents are addressed")
    fiscal_year_start_month: int = Field(default=1, ge=1, le=12, description="Calendar month the fiscal year starts")

    # HOA dues
    hoa_penalty_rate: Decimal = Field(default=Decimal("0.10"), ge=0)
    hoa_grace_period_days: int = Field(default=10, ge=0)
    hoa_compound: bool = True
    hoa_due_day: int = Field(default=1, ge=1, le=31)
    hoa_allow_prepayment: bool = True
    hoa_credit_pool: str = "shared"

    # Water bills
    water_penalty_rate: Decimal = Field(default=Decimal("0.10"), ge=0)
    water_grace_period_days: int = Field(default=10, ge=0)
    water_compound: bool = True
    water_due_day: int = Field(default=1, ge=1, le=31)
    water_allow_prepayment: bool = False
    water_credit_pool: str = "shared"
    water_rate_per_m3: int = Field(default=5000, ge=0, description="Charge per cubic meter, in minor units")
    water_minimum_charge: int = Field(default=0, ge=0, description="Minimum water charge, in minor units")

    # Store contention retry (caller side)
    store_retry_attempts: int = Field(default=5, ge=1)
    store_retry_wait_seconds: float = Field(default=0.1, ge=0)
    store_retry_max_wait_seconds: float = Field(default=2.0, ge=0)

    # Billing runs
    use_credit_for_billing_runs: bool = Field(
        default=True, description="Cover newly billed periods from existing credit"
    )

    def _track_config(self, prefix: str, **metering) -> TrackConfig:
        return TrackConfig(
            **metering,
            penalty_rate=getattr(self, f"{prefix}_penalty_rate"),
            grace_period_days=getattr(self, f"{prefix}_grace_period_days"),
            compound=getattr(self, f"{prefix}_compound"),
            due_day=getattr(self, f"{prefix}_due_day"),
            allow_prepayment=getattr(self, f"{prefix}_allow_prepayment"),
            credit_pool=getattr(self, f"{prefix}_credit_pool"),
        )

    def client_config(self) -> ClientConfig:
        """Build the ClientConfig handed to every ledger component."""
        return ClientConfig(
            client_id=self.client_id,
            fiscal_year_start_month=self.fiscal_year_start_month,
            tracks={
                Track.HOA_DUES: self._track_config("hoa"),
                Track.WATER_BILLS: self._track_config(
                    "water",
                    rate_per_m3=self.water_rate_per_m3,
                    minimum_charge=self.water_minimum_charge,
                ),
            },
        )


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Load settings, reading the given .env file into the environment first.

    Priority (highest to lowest):
    1. Environment variables (DATABASE_URL, HOA_PENALTY_RATE, etc.)
    2. .env file
    3. Default values
    """
    if env_file is not None:
        load_dotenv(env_file, override=False)
    return Settings()


__all__ = ["Settings", "load_settings"]
