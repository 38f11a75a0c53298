"""
Unit tests for configuration
"""

import pytest


def test_marketplace_defaults():
    """Test that marketplace rules load with their defaults"""
    from config.marketplace_config import (
        DEFAULT_MAX_SLOTS,
        DEFAULT_BASE_PRICE,
        SLOT_PRICE_MULTIPLIERS,
        EXCLUSIVE_TIER_FACTOR,
        EXCLUSIVE_DISCOUNT,
        LEAD_FRESHNESS_HOURS,
        STARTING_BALANCE,
        REFERRAL_BONUS,
        REFERRAL_WELCOME_BONUS,
    )

    assert DEFAULT_MAX_SLOTS == 3
    assert DEFAULT_BASE_PRICE == 250
    assert SLOT_PRICE_MULTIPLIERS == [1.0, 1.5, 2.5]
    assert EXCLUSIVE_TIER_FACTOR == 5.0
    assert EXCLUSIVE_DISCOUNT == 0.85
    assert LEAD_FRESHNESS_HOURS == 48
    assert STARTING_BALANCE == 2
    assert REFERRAL_BONUS == 5
    assert REFERRAL_WELCOME_BONUS == 2


def test_reason_labels():
    from config.marketplace_config import get_reason_label

    assert get_reason_label("unreachable") == "Number Unreachable"
    assert get_reason_label("already_closed") == "Already Found House"
    assert get_reason_label("mystery") == "mystery"


def test_validate_config_development(monkeypatch):
    import config.config as cfg

    monkeypatch.setattr(cfg, "ENVIRONMENT", "development")
    monkeypatch.setattr(cfg, "CORE_API_KEY", "")

    assert cfg.validate_config() is True


def test_validate_config_production_requirements(monkeypatch):
    """Production refuses SQLite and a missing API key"""
    import config.config as cfg

    monkeypatch.setattr(cfg, "ENVIRONMENT", "production")
    monkeypatch.setattr(cfg, "CORE_API_KEY", "")
    monkeypatch.setattr(cfg, "DATABASE_URL", "sqlite+aiosqlite:///leads.db")

    with pytest.raises(ValueError) as exc_info:
        cfg.validate_config()

    message = str(exc_info.value)
    assert "CORE_API_KEY is required in production" in message
    assert "SQLite is not supported in production" in message
