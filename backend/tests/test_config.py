from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_defaults_match_fee_schedule():
    settings = Settings()
    assert settings.platform_fee_bps == 300
    assert settings.prediction_pool_bps == 2000
    assert settings.settle_interval_seconds == 60


def test_fee_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("PLATFORM_FEE_BPS", "250")
    monkeypatch.setenv("PREDICTION_POOL_BPS", "1000")

    settings = Settings()

    assert settings.platform_fee_bps == 250
    assert settings.prediction_pool_bps == 1000


def test_fee_bps_must_be_within_range():
    with pytest.raises(ValidationError):
        Settings(platform_fee_bps=10_001)


def test_postgres_urls_use_psycopg_driver():
    settings = Settings(database_url="postgres://user:pass@db:5432/domabid")
    assert settings.resolved_database_url.startswith("postgresql+psycopg://user:pass@db:5432/domabid")


def test_onchain_listing_needs_url_and_key():
    assert not Settings(doma_orderbook_url=None, relayer_private_key=None).onchain_listing_enabled
    assert not Settings(doma_orderbook_url="https://ob.test", relayer_private_key=" ").onchain_listing_enabled
    assert Settings(
        doma_orderbook_url="https://ob.test", relayer_private_key="0x01", dev_offchain=False
    ).onchain_listing_enabled
