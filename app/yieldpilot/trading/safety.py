"""
Execution safety checks.

Safety violations are values, not exceptions: the gate returns a
GateResult telling the controller whether to run, defer, fail or pause.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from ..config import TradingConfig
from ..types import PendingTrade, TradingState


logger = logging.getLogger(__name__)


DAILY_LIMIT_REASON = "daily volume limit exceeded"


class GateVerdict(Enum):
    """Outcome of the execution gate."""
    ALLOW = "allow"
    DEFER = "defer"  # keep the trade approved, retry later
    FAIL = "fail"    # mark the trade failed
    PAUSE = "pause"  # pause the controller and mark the trade failed


@dataclass
class GateResult:
    """Result of the execution gate with a reason for anything but ALLOW."""
    verdict: GateVerdict
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.verdict == GateVerdict.ALLOW

    def __bool__(self) -> bool:
        return self.allowed


def check_execution_gate(
    state: TradingState,
    config: TradingConfig,
    trade: PendingTrade,
    now: datetime,
) -> GateResult:
    """
    Decide whether an approved trade may execute now.

    Checks run in order: cooldown, daily volume cap, then the circuit
    breakers (drawdown, consecutive losses, explicit pause).
    """
    if state.last_trade_time is not None:
        elapsed_ms = (now - state.last_trade_time).total_seconds() * 1000
        if elapsed_ms < config.min_time_between_trades_ms:
            remaining = (config.min_time_between_trades_ms - elapsed_ms) / 1000
            return GateResult(GateVerdict.DEFER, f"cooldown active, {remaining:.0f}s remaining")

    if state.total_volume_today + trade.estimated_value_usd > config.max_daily_trades_usd:
        return GateResult(GateVerdict.FAIL, DAILY_LIMIT_REASON)

    if state.current_drawdown > config.max_drawdown_percent:
        return GateResult(GateVerdict.PAUSE, drawdown_reason(state.current_drawdown))

    if state.consecutive_losses >= config.max_consecutive_losses:
        return GateResult(GateVerdict.PAUSE, loss_breaker_reason(state.consecutive_losses))

    if state.is_paused:
        return GateResult(GateVerdict.PAUSE, state.pause_reason or "Controller paused")

    return GateResult(GateVerdict.ALLOW)


def compute_drawdown(peak_value: float, current_value: float) -> Tuple[float, float]:
    """
    Update the peak and compute drawdown.

    Returns:
        (new_peak, drawdown_percent) with drawdown 0 while no peak exists
    """
    peak = max(peak_value, current_value)
    if peak <= 0:
        return peak, 0.0
    return peak, (peak - current_value) / peak * 100


def drawdown_reason(drawdown: float) -> str:
    return f"Max drawdown exceeded: {drawdown:.2f}%"


def loss_breaker_reason(losses: int) -> str:
    return f"Circuit breaker: {losses} consecutive failures"


def verify_autonomous_readiness(state: TradingState, config: TradingConfig) -> List[str]:
    """
    Self-check run when switching to autonomous mode.

    Returns the issues found; an empty list means ready. Issues are
    advisory and never block the mode change.
    """
    issues: List[str] = []

    if state.portfolio is None:
        issues.append("No portfolio snapshot loaded")
    if not state.current_yields:
        issues.append("No yield data loaded")
    if state.is_paused:
        issues.append(f"Controller is paused: {state.pause_reason}")
    if state.consecutive_losses > 0:
        issues.append(f"{state.consecutive_losses} consecutive losses recorded")
    if state.current_drawdown > config.max_drawdown_percent / 2:
        issues.append(f"Drawdown {state.current_drawdown:.2f}% above half the limit")
    if config.require_approval_above_usd > config.max_daily_trades_usd:
        issues.append("Approval threshold above daily volume cap, all trades auto-approve")

    if issues:
        for issue in issues:
            logger.warning(f"Autonomous readiness: {issue}")
    else:
        logger.info("Autonomous readiness check passed")
    return issues
