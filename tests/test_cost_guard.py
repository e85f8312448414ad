from datetime import date
from unittest.mock import Mock

import pytest

from supportbot.services.cost_guard import (
    DAILY_LIMIT_MESSAGE,
    DAILY_LIMIT_REASON,
    MONTHLY_LIMIT_MESSAGE,
    MONTHLY_LIMIT_REASON,
    check_cost_guard,
    cost_limit_message,
    estimate_context_tokens,
    estimate_cost,
    increment_cost_usage,
    tokens_to_cost,
)

TODAY = date(2026, 10, 19)


def _config(**overrides):
    values = {
        "daily_cost_usage": 0.0,
        "daily_cost_cap": 1.0,
        "monthly_cost_usage": 0.0,
        "monthly_cost_cap": 10.0,
        "last_cost_reset_date": "2026-10-19",
    }
    values.update(overrides)
    return Mock(**values)


def _db_with(config):
    db = Mock()
    db.query().filter().first.return_value = config
    return db


class TestEstimates:
    def test_context_tokens_chars_over_four_plus_overhead(self):
        assert estimate_context_tokens(["a" * 40]) == 110

    def test_context_tokens_rounds_up(self):
        assert estimate_context_tokens(["abcde"]) == 102

    def test_context_tokens_ignores_none(self):
        assert estimate_context_tokens([None, ""]) == 100

    def test_estimate_cost_adds_expected_output(self):
        estimate = estimate_cost(110)
        assert estimate.estimated_tokens == 610
        assert estimate.estimated_cost == pytest.approx(610 * 0.0000015)

    def test_estimate_cost_custom_output(self):
        assert estimate_cost(100, expected_output_tokens=0).estimated_tokens == 100

    def test_tokens_to_cost_clamps_negative(self):
        assert tokens_to_cost(-5) == 0


class TestCheckCostGuard:
    def test_allows_under_caps(self):
        result = check_cost_guard(_db_with(_config(daily_cost_usage=0.2)), "acme", 0.1, today=TODAY)
        assert result.allowed is True
        assert result.current_daily_cost == 0.2

    def test_rejects_daily(self):
        result = check_cost_guard(_db_with(_config(daily_cost_usage=0.95)), "acme", 0.1, today=TODAY)
        assert result.allowed is False
        assert result.reason == DAILY_LIMIT_REASON

    def test_daily_checked_before_monthly(self):
        config = _config(daily_cost_usage=0.95, monthly_cost_usage=9.95)
        result = check_cost_guard(_db_with(config), "acme", 0.1, today=TODAY)
        assert result.reason == DAILY_LIMIT_REASON

    def test_rejects_monthly(self):
        config = _config(daily_cost_usage=0.0, monthly_cost_usage=9.95)
        result = check_cost_guard(_db_with(config), "acme", 0.1, today=TODAY)
        assert result.allowed is False
        assert result.reason == MONTHLY_LIMIT_REASON

    def test_daily_reset_on_new_day(self):
        config = _config(daily_cost_usage=0.95, last_cost_reset_date="2026-10-18")
        result = check_cost_guard(_db_with(config), "acme", 0.1, today=TODAY)
        assert result.allowed is True
        assert result.current_daily_cost == 0.0

    def test_monthly_reset_on_new_month(self):
        config = _config(monthly_cost_usage=9.95, last_cost_reset_date="2026-09-30")
        result = check_cost_guard(_db_with(config), "acme", 0.1, today=date(2026, 10, 1))
        assert result.allowed is True
        assert result.current_monthly_cost == 0.0

    def test_new_day_same_month_keeps_monthly(self):
        config = _config(monthly_cost_usage=9.95, last_cost_reset_date="2026-10-18")
        result = check_cost_guard(_db_with(config), "acme", 0.1, today=TODAY)
        assert result.reason == MONTHLY_LIMIT_REASON

    def test_no_caps_allows(self):
        config = _config(daily_cost_cap=None, monthly_cost_cap=None, daily_cost_usage=500.0)
        assert check_cost_guard(_db_with(config), "acme", 1.0, today=TODAY).allowed is True

    def test_missing_config_fails_open(self):
        assert check_cost_guard(_db_with(None), "acme", 100.0, today=TODAY).allowed is True

    def test_database_error_fails_open(self):
        db = Mock()
        db.query.side_effect = Exception("connection lost")
        assert check_cost_guard(db, "acme", 100.0, today=TODAY).allowed is True


class TestIncrementCostUsage:
    def test_adds_cost_and_commits(self):
        config = _config(daily_cost_usage=0.2, monthly_cost_usage=3.0)
        db = _db_with(config)

        increment_cost_usage(db, "acme", 0.05, today=TODAY)

        assert config.daily_cost_usage == pytest.approx(0.25)
        assert config.monthly_cost_usage == pytest.approx(3.05)
        db.commit.assert_called_once()

    def test_applies_reset_before_adding(self):
        config = _config(daily_cost_usage=0.9, monthly_cost_usage=8.0, last_cost_reset_date="2026-09-30")
        db = _db_with(config)

        increment_cost_usage(db, "acme", 0.05, today=TODAY)

        assert config.daily_cost_usage == pytest.approx(0.05)
        assert config.monthly_cost_usage == pytest.approx(0.05)
        assert config.last_cost_reset_date == "2026-10-19"

    def test_never_raises(self):
        db = _db_with(_config())
        db.commit.side_effect = Exception("deadlock")

        increment_cost_usage(db, "acme", 0.05, today=TODAY)

        db.rollback.assert_called_once()


class TestCostLimitMessage:
    def test_daily(self):
        assert cost_limit_message(DAILY_LIMIT_REASON) == DAILY_LIMIT_MESSAGE

    def test_monthly(self):
        assert cost_limit_message(MONTHLY_LIMIT_REASON) == MONTHLY_LIMIT_MESSAGE
