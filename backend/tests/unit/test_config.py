"""Tests for application settings."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "DEFAULT_CURRENCY",
            "EXCHANGE_RATE_FALLBACK",
            "MATERIALIZE_BATCH_SIZE",
            "COST_BASIS_SCALE",
        ):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.DEFAULT_CURRENCY == "USD"
        assert settings.EXCHANGE_RATE_FALLBACK == Decimal("1")
        assert settings.MATERIALIZE_BATCH_SIZE == 500
        assert settings.COST_BASIS_SCALE == 6

    def test_currency_normalized(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_CURRENCY", " eur ")
        assert Settings(_env_file=None).DEFAULT_CURRENCY == "EUR"

    def test_fallback_rate_from_env(self, monkeypatch):
        monkeypatch.setenv("EXCHANGE_RATE_FALLBACK", "0")
        assert Settings(_env_file=None).EXCHANGE_RATE_FALLBACK == Decimal("0")

    def test_batch_size_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("MATERIALIZE_BATCH_SIZE", "0")
        with pytest.raises(ValidationError, match="MATERIALIZE_BATCH_SIZE"):
            Settings(_env_file=None)
