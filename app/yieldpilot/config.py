"""
Centralized configuration management with Pydantic validation.
"""

import os
from typing import Any, Dict

from pydantic import BaseModel, Field, ValidationError, validator
from pydantic_settings import BaseSettings

from .core.error_handling import ConfigError
from .types import TradingMode


RISK_TOLERANCE_MAX_SCORE = {
    "low": 35,
    "medium": 55,
    "high": 75,
}

# Minimum adjusted APY improvement (%) worth a rebalance, regardless of strategy
MIN_REBALANCE_THRESHOLD = 1.0


class StrategyConfig(BaseModel):
    """Allocation strategy used by the decision engine."""

    name: str = Field(default="risk-adjusted")
    risk_tolerance: str = Field(default="medium")
    rebalance_threshold: float = Field(default=1.0, ge=0)
    max_protocol_concentration: float = Field(default=0.5, gt=0, le=1)
    max_slippage_bps: int = Field(default=100, ge=0, le=10000)

    @validator("risk_tolerance")
    def validate_risk_tolerance(cls, v):
        if v not in RISK_TOLERANCE_MAX_SCORE:
            raise ValueError(f"risk_tolerance must be one of {sorted(RISK_TOLERANCE_MAX_SCORE)}")
        return v

    @property
    def max_risk_score(self) -> int:
        """Highest acceptable overall risk score for this tolerance."""
        return RISK_TOLERANCE_MAX_SCORE[self.risk_tolerance]

    @property
    def effective_rebalance_threshold(self) -> float:
        return max(self.rebalance_threshold, MIN_REBALANCE_THRESHOLD)

    @classmethod
    def from_env(cls) -> "StrategyConfig":
        """Load strategy from environment variables."""
        return cls(
            name=os.getenv("YIELDPILOT_STRATEGY_NAME", "risk-adjusted"),
            risk_tolerance=os.getenv("YIELDPILOT_RISK_TOLERANCE", "medium"),
            rebalance_threshold=float(os.getenv("YIELDPILOT_REBALANCE_THRESHOLD", "1.0")),
            max_protocol_concentration=float(os.getenv("YIELDPILOT_MAX_PROTOCOL_CONCENTRATION", "0.5")),
            max_slippage_bps=int(os.getenv("YIELDPILOT_MAX_SLIPPAGE_BPS", "100")),
        )


class TradingConfig(BaseModel):
    """Safety limits and timing for the trading controller."""

    mode: TradingMode = Field(default=TradingMode.MONITORING)

    # Safety limits
    # TODO: enforce max_trade_value_usd per trade once trade values come from
    # priced fills rather than position snapshots; currently reserved.
    max_trade_value_usd: float = Field(default=1000.0, gt=0)
    max_daily_trades_usd: float = Field(default=5000.0, gt=0)
    max_position_concentration: float = Field(default=0.5, gt=0, le=1)
    max_slippage_bps: int = Field(default=100, ge=0, le=10000)

    # Timing
    min_time_between_trades_ms: int = Field(default=60 * 1000, ge=0)
    decision_interval_ms: int = Field(default=5 * 60 * 1000, gt=0)

    # Circuit breakers
    max_consecutive_losses: int = Field(default=3, gt=0)
    max_drawdown_percent: float = Field(default=10.0, gt=0, le=100)
    # Reserved: declared for operators, not wired to an automatic exit.
    emergency_exit_threshold: int = Field(default=80, ge=0, le=100)

    # Approvals
    require_approval_above_usd: float = Field(default=500.0, ge=0)

    class Config:
        validate_assignment = True

    @property
    def max_slippage(self) -> float:
        """Slippage as a fraction, as the executor expects it."""
        return self.max_slippage_bps / 10000

    def merged(self, updates: Dict[str, Any]) -> "TradingConfig":
        """
        Return a validated copy with updates applied.

        Raises:
            ConfigError: If a key is unknown or a value fails validation
        """
        unknown = set(updates) - set(type(self).model_fields)
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}", config_key=sorted(unknown)[0])
        try:
            return type(self)(**{**self.model_dump(), **updates})
        except ValidationError as e:
            raise ConfigError(f"Invalid trading config: {e}", cause=e)

    @classmethod
    def from_env(cls) -> "TradingConfig":
        """Load configuration from environment variables."""
        return cls(
            mode=os.getenv("YIELDPILOT_MODE", "monitoring"),
            max_trade_value_usd=float(os.getenv("YIELDPILOT_MAX_TRADE_VALUE_USD", "1000")),
            max_daily_trades_usd=float(os.getenv("YIELDPILOT_MAX_DAILY_TRADES_USD", "5000")),
            max_position_concentration=float(os.getenv("YIELDPILOT_MAX_POSITION_CONCENTRATION", "0.5")),
            max_slippage_bps=int(os.getenv("YIELDPILOT_MAX_SLIPPAGE_BPS", "100")),
            min_time_between_trades_ms=int(os.getenv("YIELDPILOT_MIN_TIME_BETWEEN_TRADES_MS", "60000")),
            decision_interval_ms=int(os.getenv("YIELDPILOT_DECISION_INTERVAL_MS", "300000")),
            max_consecutive_losses=int(os.getenv("YIELDPILOT_MAX_CONSECUTIVE_LOSSES", "3")),
            max_drawdown_percent=float(os.getenv("YIELDPILOT_MAX_DRAWDOWN_PERCENT", "10")),
            emergency_exit_threshold=int(os.getenv("YIELDPILOT_EMERGENCY_EXIT_THRESHOLD", "80")),
            require_approval_above_usd=float(os.getenv("YIELDPILOT_REQUIRE_APPROVAL_ABOVE_USD", "500")),
        )


class YieldPilotSettings(BaseSettings):
    """Main application configuration."""

    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    portfolio_refresh_seconds: float = Field(default=30.0, gt=0)
    max_tracked_yields: int = Field(default=50, ge=1)
    paper_wallet_usd: float = Field(default=10000.0, ge=0)

    trading: TradingConfig = Field(default_factory=TradingConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)

    class Config:
        env_prefix = "YIELDPILOT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"
        extra = "ignore"

    @classmethod
    def load_from_env(cls) -> "YieldPilotSettings":
        """
        Load complete configuration from environment.

        Raises:
            ConfigError: If any value fails validation
        """
        try:
            return cls(
                trading=TradingConfig.from_env(),
                strategy=StrategyConfig.from_env(),
            )
        except (ValidationError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}", cause=e)


def parse_mode(value: Any) -> TradingMode:
    """
    Parse an operator-supplied mode.

    Raises:
        ConfigError: If the value is not a known mode
    """
    if isinstance(value, TradingMode):
        return value
    try:
        return TradingMode(str(value).lower())
    except ValueError:
        raise ConfigError(
            f"Invalid trading mode {value!r}; expected one of {[m.value for m in TradingMode]}",
            config_key="mode",
        )


__all__ = [
    "RISK_TOLERANCE_MAX_SCORE",
    "MIN_REBALANCE_THRESHOLD",
    "StrategyConfig",
    "TradingConfig",
    "YieldPilotSettings",
    "parse_mode",
]
