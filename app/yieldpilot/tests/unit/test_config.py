"""
Unit tests for configuration models and environment loading.
"""

import pytest
from pydantic import ValidationError

from app.yieldpilot.config import (
    StrategyConfig,
    TradingConfig,
    YieldPilotSettings,
    parse_mode,
)
from app.yieldpilot.core.error_handling import ConfigError
from app.yieldpilot.types import TradingMode


class TestStrategyConfig:

    def test_defaults(self):
        strategy = StrategyConfig()

        assert strategy.risk_tolerance == "medium"
        assert strategy.max_risk_score == 55
        assert strategy.max_protocol_concentration == 0.5

    @pytest.mark.parametrize("tolerance,expected", [("low", 35), ("medium", 55), ("high", 75)])
    def test_tolerance_maps_to_max_score(self, tolerance, expected):
        assert StrategyConfig(risk_tolerance=tolerance).max_risk_score == expected

    def test_invalid_tolerance_rejected(self):
        with pytest.raises(ValidationError):
            StrategyConfig(risk_tolerance="yolo")

    def test_rebalance_threshold_floor(self):
        assert StrategyConfig(rebalance_threshold=0.2).effective_rebalance_threshold == 1.0
        assert StrategyConfig(rebalance_threshold=2.5).effective_rebalance_threshold == 2.5

    def test_concentration_bounds(self):
        with pytest.raises(ValidationError):
            StrategyConfig(max_protocol_concentration=0)
        with pytest.raises(ValidationError):
            StrategyConfig(max_protocol_concentration=1.5)


class TestTradingConfig:

    def test_defaults(self):
        config = TradingConfig()

        assert config.mode == TradingMode.MONITORING
        assert config.max_trade_value_usd == 1000
        assert config.max_daily_trades_usd == 5000
        assert config.max_position_concentration == 0.5
        assert config.max_slippage_bps == 100
        assert config.min_time_between_trades_ms == 60_000
        assert config.decision_interval_ms == 300_000
        assert config.max_consecutive_losses == 3
        assert config.max_drawdown_percent == 10
        assert config.emergency_exit_threshold == 80
        assert config.require_approval_above_usd == 500
        assert config.max_slippage == pytest.approx(0.01)

    def test_merged_returns_validated_copy(self):
        config = TradingConfig()

        merged = config.merged({"max_daily_trades_usd": 100, "mode": "autonomous"})

        assert merged.max_daily_trades_usd == 100
        assert merged.mode == TradingMode.AUTONOMOUS
        assert config.max_daily_trades_usd == 5000

    def test_merged_rejects_unknown_keys(self):
        with pytest.raises(ConfigError) as exc_info:
            TradingConfig().merged({"max_leverage": 10})

        assert exc_info.value.context.metadata["config_key"] == "max_leverage"

    def test_merged_rejects_invalid_values(self):
        with pytest.raises(ConfigError):
            TradingConfig().merged({"max_consecutive_losses": 0})

    def test_assignment_is_validated(self):
        config = TradingConfig()

        with pytest.raises(ValidationError):
            config.max_drawdown_percent = 150

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("YIELDPILOT_MODE", "manual")
        monkeypatch.setenv("YIELDPILOT_MAX_DAILY_TRADES_USD", "2500")
        monkeypatch.setenv("YIELDPILOT_MIN_TIME_BETWEEN_TRADES_MS", "0")

        config = TradingConfig.from_env()

        assert config.mode == TradingMode.MANUAL
        assert config.max_daily_trades_usd == 2500
        assert config.min_time_between_trades_ms == 0


class TestParseMode:

    @pytest.mark.parametrize("value", ["autonomous", "AUTONOMOUS", TradingMode.AUTONOMOUS])
    def test_valid(self, value):
        assert parse_mode(value) == TradingMode.AUTONOMOUS

    def test_invalid(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_mode("turbo")

        assert "turbo" in exc_info.value.message


class TestSettings:

    def test_load_from_env(self, monkeypatch):
        monkeypatch.setenv("YIELDPILOT_RISK_TOLERANCE", "low")
        monkeypatch.setenv("YIELDPILOT_REBALANCE_THRESHOLD", "2.5")
        monkeypatch.setenv("YIELDPILOT_PAPER_WALLET_USD", "2500")

        settings = YieldPilotSettings.load_from_env()

        assert settings.strategy.risk_tolerance == "low"
        assert settings.strategy.effective_rebalance_threshold == 2.5
        assert settings.paper_wallet_usd == 2500

    def test_invalid_env_raises_config_error(self, monkeypatch):
        monkeypatch.setenv("YIELDPILOT_MODE", "turbo")

        with pytest.raises(ConfigError):
            YieldPilotSettings.load_from_env()
