"""
Unit tests for the execution gate and circuit breaker helpers.
"""

from datetime import timedelta

import pytest

from app.yieldpilot.config import TradingConfig
from app.yieldpilot.trading import GateVerdict, check_execution_gate, compute_drawdown, verify_autonomous_readiness
from app.yieldpilot.trading.safety import DAILY_LIMIT_REASON
from app.yieldpilot.tests.fixtures.factories import T0, make_move, make_portfolio, make_position
from app.yieldpilot.types import PendingTrade, TradeStatus, TradingMode, TradingState


@pytest.fixture
def state():
    return TradingState(mode=TradingMode.AUTONOMOUS, session_id="session_test", session_start_time=T0)


@pytest.fixture
def config():
    return TradingConfig(mode=TradingMode.AUTONOMOUS)


def approved_trade(value):
    return PendingTrade(
        id="trade_test",
        timestamp=T0,
        action=make_move(value),
        estimated_value_usd=value,
        status=TradeStatus.APPROVED,
        requires_approval=False,
    )


class TestExecutionGate:
    """Tests for check_execution_gate."""

    def test_allows_clean_trade(self, state, config):
        result = check_execution_gate(state, config, approved_trade(100), T0)

        assert result.verdict == GateVerdict.ALLOW
        assert result
        assert result.reason is None

    def test_cooldown_defers(self, state, config):
        state.last_trade_time = T0

        result = check_execution_gate(state, config, approved_trade(100), T0 + timedelta(seconds=20))

        assert result.verdict == GateVerdict.DEFER
        assert not result
        assert result.reason == "cooldown active, 40s remaining"

    def test_cooldown_elapsed_allows(self, state, config):
        state.last_trade_time = T0

        result = check_execution_gate(state, config, approved_trade(100), T0 + timedelta(seconds=60))

        assert result.allowed

    def test_daily_limit_fails(self, state, config):
        state.total_volume_today = 4990

        result = check_execution_gate(state, config, approved_trade(50), T0)

        assert result.verdict == GateVerdict.FAIL
        assert result.reason == DAILY_LIMIT_REASON

    def test_daily_limit_is_inclusive(self, state, config):
        state.total_volume_today = 4900

        assert check_execution_gate(state, config, approved_trade(100), T0).allowed

    def test_drawdown_pauses(self, state, config):
        state.current_drawdown = 10.5

        result = check_execution_gate(state, config, approved_trade(100), T0)

        assert result.verdict == GateVerdict.PAUSE
        assert result.reason == "Max drawdown exceeded: 10.50%"

    def test_loss_breaker_pauses(self, state, config):
        state.consecutive_losses = 3

        result = check_execution_gate(state, config, approved_trade(100), T0)

        assert result.verdict == GateVerdict.PAUSE
        assert result.reason == "Circuit breaker: 3 consecutive failures"

    def test_explicit_pause(self, state, config):
        state.is_paused = True
        state.pause_reason = "operator"

        result = check_execution_gate(state, config, approved_trade(100), T0)

        assert result.verdict == GateVerdict.PAUSE
        assert result.reason == "operator"

    def test_cooldown_checked_before_daily_limit(self, state, config):
        state.last_trade_time = T0
        state.total_volume_today = 5000

        result = check_execution_gate(state, config, approved_trade(100), T0)

        assert result.verdict == GateVerdict.DEFER

    def test_daily_limit_checked_before_breakers(self, state, config):
        state.total_volume_today = 5000
        state.consecutive_losses = 5

        result = check_execution_gate(state, config, approved_trade(100), T0)

        assert result.verdict == GateVerdict.FAIL


class TestDrawdown:
    """Tests for compute_drawdown."""

    @pytest.mark.parametrize("peak,value,expected_peak,expected_drawdown", [
        (0, 0, 0, 0.0),
        (0, 1000, 1000, 0.0),
        (1000, 1200, 1200, 0.0),
        (1000, 900, 1000, 10.0),
        (1000, 0, 1000, 100.0),
    ])
    def test_compute_drawdown(self, peak, value, expected_peak, expected_drawdown):
        new_peak, drawdown = compute_drawdown(peak, value)

        assert new_peak == expected_peak
        assert drawdown == pytest.approx(expected_drawdown)


class TestAutonomousReadiness:
    """Tests for the advisory readiness check."""

    def test_fresh_state_reports_missing_data(self, state, config):
        issues = verify_autonomous_readiness(state, config)

        assert "No portfolio snapshot loaded" in issues
        assert "No yield data loaded" in issues

    def test_ready_state_has_no_issues(self, state, config):
        from app.yieldpilot.tests.fixtures.factories import make_opportunity

        state.portfolio = make_portfolio(make_position("kamino", "USDC", 1000, 8.0))
        state.current_yields = [make_opportunity("kamino", "USDC", 8.0, 20)]

        assert verify_autonomous_readiness(state, config) == []

    def test_flags_losses_and_pause(self, state, config):
        state.portfolio = make_portfolio()
        state.consecutive_losses = 2
        state.is_paused = True
        state.pause_reason = "operator"

        issues = verify_autonomous_readiness(state, config)

        assert "Controller is paused: operator" in issues
        assert "2 consecutive losses recorded" in issues
