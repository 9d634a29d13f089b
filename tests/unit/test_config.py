"""Unit tests for ledger settings."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from unitledger.config import Settings, load_settings
from unitledger.schemas.client_config import Track

SETTINGS_ENV = [
    "DATABASE_URL",
    "CLIENT_ID",
    "FISCAL_YEAR_START_MONTH",
    "HOA_PENALTY_RATE",
    "WATER_CREDIT_POOL",
    "WATER_ALLOW_PREPAYMENT",
    "WATER_RATE_PER_M3",
    "WATER_MINIMUM_CHARGE",
    "STORE_RETRY_ATTEMPTS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove ledger variables from the environment for each test."""
    for name in SETTINGS_ENV:
        # Registered first so load_dotenv's writes are undone after the test
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)


class TestSettings:
    """Test settings defaults and overrides."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.database_url == "sqlite:///./unitledger.db"
        assert settings.fiscal_year_start_month == 1
        assert settings.hoa_penalty_rate == Decimal("0.10")
        assert settings.store_retry_attempts == 5
        assert settings.use_credit_for_billing_runs is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("HOA_PENALTY_RATE", "0.05")
        monkeypatch.setenv("FISCAL_YEAR_START_MONTH", "7")

        settings = Settings(_env_file=None)

        assert settings.hoa_penalty_rate == Decimal("0.05")
        assert settings.fiscal_year_start_month == 7

    def test_invalid_start_month(self, monkeypatch):
        monkeypatch.setenv("FISCAL_YEAR_START_MONTH", "13")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("CLIENT_ID=acme\nFISCAL_YEAR_START_MONTH=7\nUNRELATED_KEY=1\n")

        settings = Settings(_env_file=env_file)

        assert settings.client_id == "acme"
        assert settings.fiscal_year_start_month == 7

    def test_load_settings_reads_dotenv(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("STORE_RETRY_ATTEMPTS=2\n")

        settings = load_settings(env_file)

        assert settings.store_retry_attempts == 2


class TestClientConfig:
    """Test building the client configuration."""

    def test_default_tracks(self):
        config = Settings(_env_file=None).client_config()

        assert config.track(Track.HOA_DUES).allow_prepayment is True
        assert config.track(Track.WATER_BILLS).allow_prepayment is False
        assert config.pool_for(Track.HOA_DUES) == config.pool_for(Track.WATER_BILLS) == "shared"

    def test_separate_water_pool(self, monkeypatch):
        monkeypatch.setenv("WATER_CREDIT_POOL", "water")
        monkeypatch.setenv("CLIENT_ID", "acme")

        config = Settings(_env_file=None).client_config()

        assert config.client_id == "acme"
        assert config.pool_for(Track.WATER_BILLS) == "water"
        assert config.pool_for(Track.HOA_DUES) == "shared"

    def test_water_metering(self, monkeypatch):
        monkeypatch.setenv("WATER_RATE_PER_M3", "4500")
        monkeypatch.setenv("WATER_MINIMUM_CHARGE", "15000")

        config = Settings(_env_file=None).client_config()

        water = config.track(Track.WATER_BILLS)
        assert (water.rate_per_m3, water.minimum_charge) == (4500, 15000)
        assert config.track(Track.HOA_DUES).rate_per_m3 == 5000
