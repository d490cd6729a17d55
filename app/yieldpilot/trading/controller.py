"""
Trading Controller

Supervises the decision loop: refreshes market and portfolio snapshots,
asks the DecisionEngine for a decision, dispatches it according to the
trading mode, and drives queued trades through approval, the execution
gate and the executor.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union
from uuid import uuid4

from .safety import (
    GateVerdict,
    check_execution_gate,
    compute_drawdown,
    drawdown_reason,
    loss_breaker_reason,
    verify_autonomous_readiness,
)
from ..bus import EventBus
from ..config import StrategyConfig, TradingConfig, parse_mode
from ..core.clock import Clock, SystemClock
from ..core.error_handling import (
    AuditError,
    ConfigError,
    DataFetchError,
    ErrorTracker,
    ExecutionError,
)
from ..core.interfaces import AuditStore, Executor, PortfolioSource, YieldSource
from ..decision.decision_engine import DecisionEngine
from ..types import (
    Decision,
    PendingTrade,
    Portfolio,
    RebalanceAction,
    TradeStatus,
    TradingEventType,
    TradingMode,
    TradingState,
)


logger = logging.getLogger(__name__)


PORTFOLIO_CHANGE_EPSILON = 0.01
AUDIT_YIELD_SNAPSHOT = 20


@dataclass
class ControlResult:
    """Outcome of a control API call."""
    success: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, reason: Optional[str] = None) -> "ControlResult":
        return cls(True, reason)

    @classmethod
    def fail(cls, reason: str) -> "ControlResult":
        return cls(False, reason)


class TradingController:
    """
    Supervised execution of allocation decisions.

    Modes:
    - manual: decisions with actions raise a recommendation alert
    - monitoring: decisions with actions raise an opportunity alert
    - autonomous: actions are queued as trades and executed behind the gate

    Pausing is independent of the mode and blocks new queueing and
    execution in every mode.
    """

    def __init__(
        self,
        yield_source: YieldSource,
        portfolio_source: PortfolioSource,
        executor: Executor,
        strategy: StrategyConfig,
        config: Optional[Union[TradingConfig, Dict[str, Any]]] = None,
        event_bus: Optional[EventBus] = None,
        audit_store: Optional[AuditStore] = None,
        clock: Optional[Clock] = None,
        decision_engine: Optional[DecisionEngine] = None,
        portfolio_refresh_seconds: float = 30.0,
        max_tracked_yields: int = 50,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        if isinstance(config, dict):
            config = TradingConfig().merged(config)
        if portfolio_refresh_seconds <= 0:
            raise ConfigError("portfolio_refresh_seconds must be positive",
                              config_key="portfolio_refresh_seconds")
        if max_tracked_yields < 1:
            raise ConfigError("max_tracked_yields must be at least 1", config_key="max_tracked_yields")

        self._yield_source = yield_source
        self._portfolio_source = portfolio_source
        self._executor = executor
        self._audit_store = audit_store
        self._strategy = strategy
        self._config = config or TradingConfig()
        self._clock = clock or SystemClock()
        self._bus = event_bus or EventBus()
        self._engine = decision_engine or DecisionEngine(strategy, clock=self._clock)
        self._errors = error_tracker or ErrorTracker(logger)

        self.portfolio_refresh_seconds = portfolio_refresh_seconds
        self.max_tracked_yields = max_tracked_yields

        self._state = self._create_initial_state(self._config.mode)

        # Tasks
        self._decision_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._execution_tasks: Set[asyncio.Task] = set()
        self._scheduled_trade_ids: Set[str] = set()
        self._execution_lock = asyncio.Lock()

        logger.info(f"TradingController initialized in {self._state.mode.value} mode")

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def errors(self) -> ErrorTracker:
        return self._errors

    def _create_initial_state(self, mode: TradingMode) -> TradingState:
        now = self._clock.now()
        return TradingState(
            mode=mode,
            session_id=f"session_{uuid4().hex[:12]}",
            session_start_time=now,
            session_day=self._clock.today().isoformat(),
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> ControlResult:
        """Load snapshots, run a first decision cycle and start both loops."""
        if self._state.is_active:
            return ControlResult.fail("Controller already active")

        self._state = self._create_initial_state(self._state.mode)
        self._state.is_active = True

        await self.refresh_portfolio()
        await self.refresh_yields()

        self._emit(TradingEventType.MODE_CHANGE, {
            "mode": self._state.mode.value,
            "is_active": True,
            "session_id": self._state.session_id,
        })
        logger.info(f"TradingController started in {self._state.mode.value.upper()} mode "
                    f"(session {self._state.session_id})")

        await self.run_decision_cycle()

        self._decision_task = asyncio.create_task(self._decision_loop())
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        return ControlResult.ok()

    async def stop(self) -> ControlResult:
        """Cancel both loops. Trades already executing are left to finish."""
        if not self._state.is_active:
            return ControlResult.fail("Controller not active")

        self._state.is_active = False

        tasks = [t for t in (self._decision_task, self._refresh_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._decision_task = None
        self._refresh_task = None

        self._emit(TradingEventType.MODE_CHANGE, {
            "mode": self._state.mode.value,
            "is_active": False,
            "session_id": self._state.session_id,
        })
        logger.info("TradingController stopped")
        return ControlResult.ok()

    async def drain(self) -> None:
        """Wait for every scheduled trade execution to finish."""
        while self._execution_tasks:
            await asyncio.gather(*list(self._execution_tasks), return_exceptions=True)

    async def _decision_loop(self) -> None:
        while self._state.is_active:
            await self._clock.sleep(self._config.decision_interval_ms / 1000)
            try:
                await self.run_decision_cycle()
            except Exception as e:
                logger.error(f"Decision loop iteration failed: {e}", exc_info=True)

    async def _refresh_loop(self) -> None:
        while self._state.is_active:
            await self._clock.sleep(self.portfolio_refresh_seconds)
            try:
                await self.refresh_portfolio()
            except Exception as e:
                logger.error(f"Portfolio refresh iteration failed: {e}", exc_info=True)

    # ========================================================================
    # Mode control
    # ========================================================================

    def set_mode(self, mode: Union[TradingMode, str]) -> ControlResult:
        try:
            new_mode = parse_mode(mode)
        except ConfigError as e:
            logger.warning(f"Rejected mode change: {e.message}")
            return ControlResult.fail(e.message)

        previous = self._state.mode
        self._state.mode = new_mode
        self._emit(TradingEventType.MODE_CHANGE, {
            "previous_mode": previous.value,
            "new_mode": new_mode.value,
        })
        logger.info(f"Trading mode changed: {previous.value} -> {new_mode.value}")

        if new_mode == TradingMode.AUTONOMOUS:
            verify_autonomous_readiness(self._state, self._config)
        return ControlResult.ok()

    def pause(self, reason: str) -> ControlResult:
        """Pause queueing and execution. Repeated calls keep the last reason."""
        self._state.is_paused = True
        self._state.pause_reason = reason
        self._emit(TradingEventType.CIRCUIT_BREAKER, {
            "reason": reason,
            "state": self._stats_snapshot(),
        })
        logger.warning(f"Trading paused: {reason}")
        return ControlResult.ok()

    def resume(self, reset_losses: bool = False) -> ControlResult:
        """
        Clear the pause. Counters are kept.

        Args:
            reset_losses: Also clear the consecutive loss counter, re-arming
                the loss circuit breaker after an operator review
        """
        was_paused = self._state.is_paused
        self._state.is_paused = False
        self._state.pause_reason = None
        if reset_losses:
            self._state.consecutive_losses = 0

        self._emit(TradingEventType.MODE_CHANGE, {
            "action": "resume",
            "mode": self._state.mode.value,
        })
        logger.info("Trading resumed")
        return ControlResult.ok(None if was_paused else "Controller was not paused")

    def emergency_stop(self, reason: str) -> ControlResult:
        """Pause immediately. In-flight execution is not cancelled."""
        self.pause(f"EMERGENCY: {reason}")
        portfolio = self._state.portfolio
        self._emit(TradingEventType.EMERGENCY_STOP, {
            "reason": reason,
            "portfolio": portfolio.model_dump(mode="json") if portfolio else None,
        })
        logger.critical(f"EMERGENCY STOP: {reason}")
        return ControlResult.ok()

    def update_config(self, updates: Dict[str, Any]) -> ControlResult:
        """Apply a partial config update. Nothing changes if any value is invalid."""
        try:
            new_config = self._config.merged(updates)
        except ConfigError as e:
            logger.warning(f"Rejected config update: {e.message}")
            return ControlResult.fail(e.message)

        self._config = new_config
        logger.info(f"Trading config updated: {sorted(updates)}")
        if "mode" in updates and new_config.mode != self._state.mode:
            return self.set_mode(new_config.mode)
        return ControlResult.ok()

    # ========================================================================
    # Decision cycle
    # ========================================================================

    async def run_decision_cycle(self) -> Optional[Decision]:
        """
        Run one decision tick.

        Returns:
            The decision, or None when the tick was skipped or aborted
        """
        if not self._state.is_active or self._state.is_paused:
            return None

        self._roll_session_day()
        self._state.last_decision_time = self._clock.now()
        self._retry_deferred_trades()

        if not await self.refresh_yields():
            self._emit(TradingEventType.ALERT, {
                "type": "error",
                "message": "Yield refresh failed, keeping previous snapshot",
            })
            return None

        portfolio = self._state.portfolio
        if portfolio is None:
            logger.warning("No portfolio snapshot, skipping decision")
            return None

        try:
            decision = self._engine.decide(portfolio, self._state.current_yields,
                                           config=self._effective_strategy())
        except Exception as e:
            logger.error(f"Decision cycle error: {e}", exc_info=True)
            self._emit(TradingEventType.ALERT, {
                "type": "error",
                "message": f"Decision cycle failed: {e}",
            })
            return None

        self._emit(TradingEventType.DECISION, {"decision": decision.model_dump(mode="json")})
        self._dispatch(decision)
        await self._record_decision(decision, portfolio)
        return decision

    def _dispatch(self, decision: Decision) -> None:
        if not decision.actions:
            return

        mode = self._state.mode
        if mode == TradingMode.MANUAL:
            self._emit(TradingEventType.ALERT, {
                "type": "recommendation",
                "message": f"Recommended action: {decision.type.value}",
                "decision_id": str(decision.decision_id),
                "actions": [a.describe() for a in decision.actions],
            })
        elif mode == TradingMode.MONITORING:
            self._emit(TradingEventType.ALERT, {
                "type": "opportunity",
                "message": (f"Opportunity detected: {decision.type.value} "
                            f"({decision.confidence * 100:.0f}% confidence)"),
                "decision_id": str(decision.decision_id),
                "confidence": decision.confidence,
                "reasoning": list(decision.reasoning),
                "actions": [a.model_dump(mode="json", by_alias=True) for a in decision.actions],
            })
        else:
            self.queue_trades(decision)

    async def _record_decision(self, decision: Decision, portfolio: Portfolio) -> None:
        if self._audit_store is None:
            return

        context = {
            "portfolio_snapshot": portfolio.model_dump(mode="json"),
            "yield_snapshot": [y.model_dump(mode="json") for y in self._state.current_yields[:AUDIT_YIELD_SNAPSHOT]],
            "strategy": self._strategy.model_dump(mode="json"),
            "trading_mode": self._state.mode.value,
            "session_id": self._state.session_id,
        }
        try:
            await self._audit_store.record(decision, context)
        except Exception as e:
            self._errors.handle(AuditError(f"Audit record failed for {decision.decision_id}: {e}", cause=e))

    def _effective_strategy(self) -> StrategyConfig:
        limit = min(self._strategy.max_protocol_concentration, self._config.max_position_concentration)
        if limit == self._strategy.max_protocol_concentration:
            return self._strategy
        return self._strategy.model_copy(update={"max_protocol_concentration": limit})

    # ========================================================================
    # Snapshots
    # ========================================================================

    async def refresh_yields(self) -> bool:
        """Fetch ranked yields. On failure the previous snapshot is kept."""
        try:
            ranked = await self._yield_source.fetch_ranked_yields()
        except Exception as e:
            self._errors.handle(DataFetchError(f"Yield refresh failed: {e}", source="yields", cause=e))
            return False

        self._state.current_yields = list(ranked)[:self.max_tracked_yields]
        self._emit(TradingEventType.YIELD_UPDATE, {
            "count": len(self._state.current_yields),
            "top": [
                {
                    "protocol": y.protocol,
                    "asset": y.asset,
                    "apy": y.apy,
                    "adjusted_apy": y.adjusted_apy,
                    "risk_score": y.risk_score.overall,
                }
                for y in self._state.current_yields[:5]
            ],
        })
        return True

    async def refresh_portfolio(self) -> bool:
        """Fetch the portfolio, track peak value and drawdown."""
        try:
            portfolio = await self._portfolio_source.fetch_portfolio()
        except Exception as e:
            self._errors.handle(DataFetchError(f"Portfolio refresh failed: {e}", source="portfolio", cause=e))
            return False

        peak, drawdown = compute_drawdown(self._state.peak_value, portfolio.total_value)
        self._state.peak_value = peak
        self._state.current_drawdown = drawdown

        previous = self._state.portfolio
        self._state.portfolio = portfolio

        if drawdown > self._config.max_drawdown_percent and not self._state.is_paused:
            self.pause(drawdown_reason(drawdown))

        if previous is None or abs(previous.total_value - portfolio.total_value) > PORTFOLIO_CHANGE_EPSILON:
            self._emit(TradingEventType.PORTFOLIO_UPDATE, {
                "portfolio": portfolio.model_dump(mode="json"),
                "drawdown": drawdown,
                "peak_value": peak,
            })
        return True

    # ========================================================================
    # Trade queue
    # ========================================================================

    def queue_trades(self, decision: Decision) -> List[PendingTrade]:
        """Queue one pending trade per action, auto-approving small trades."""
        if self._state.is_paused:
            logger.info(f"Paused, not queueing trades for decision {decision.decision_id}")
            return []

        queued = []
        for action in decision.actions:
            value = self._estimate_value(action)
            if value is None:
                logger.warning(f"Cannot price {action.describe()}, holding it for manual approval")
            trade = PendingTrade(
                id=f"trade_{uuid4().hex[:12]}",
                timestamp=self._clock.now(),
                action=action,
                decision_id=decision.decision_id,
                estimated_value_usd=value or 0.0,
                requires_approval=value is None or value > self._config.require_approval_above_usd,
            )
            self._state.pending_trades.append(trade)
            queued.append(trade)
            self._emit(TradingEventType.TRADE_QUEUED, {"trade": trade.model_dump(mode="json")})
            logger.info(f"Trade queued: {trade.id} ${trade.estimated_value_usd:.2f} "
                        f"({'requires approval' if trade.requires_approval else 'auto-approve'})")

            if not trade.requires_approval:
                self.approve_trade(trade.id, "auto")

        return queued

    def _estimate_value(self, action: RebalanceAction) -> Optional[float]:
        """USD value moved by an action, or None when it cannot be priced."""
        if action.estimated_value_usd > 0:
            return action.estimated_value_usd
        portfolio = self._state.portfolio
        if action.from_ is not None:
            position = None
            if portfolio is not None:
                position = portfolio.find_position(action.from_.protocol, action.from_.asset)
            if position is None or position.value_usd <= 0:
                return None
            if 0 < action.from_.amount < position.amount:
                return position.value_usd * action.from_.amount / position.amount
            return position.value_usd
        if action.to is not None and action.to.amount > 0:
            return action.to.amount
        # Amount 0 deposits all available cash
        if portfolio is not None and portfolio.cash_usd > 0:
            return portfolio.cash_usd
        return None

    def approve_trade(self, trade_id: str, approver: str = "manual") -> ControlResult:
        """Approve a pending trade. In autonomous mode this schedules execution."""
        trade = self._find_trade(trade_id)
        if trade is None:
            return ControlResult.fail(f"Trade {trade_id} not found")
        if trade.status != TradeStatus.PENDING:
            return ControlResult.fail(f"Trade {trade_id} is {trade.status.value}, not pending")

        trade.status = TradeStatus.APPROVED
        trade.approved_at = self._clock.now()
        trade.approved_by = approver
        self._emit(TradingEventType.TRADE_APPROVED, {"trade": trade.model_dump(mode="json")})
        logger.info(f"Trade approved: {trade_id} by {approver}")

        if self._state.mode == TradingMode.AUTONOMOUS:
            self._schedule_execution(trade.id)
        return ControlResult.ok()

    def reject_trade(self, trade_id: str, reason: str = "manual rejection") -> ControlResult:
        trade = self._find_trade(trade_id)
        if trade is None:
            return ControlResult.fail(f"Trade {trade_id} not found")
        if trade.status != TradeStatus.PENDING:
            return ControlResult.fail(f"Trade {trade_id} is {trade.status.value}, not pending")

        trade.status = TradeStatus.REJECTED
        trade.error = reason
        logger.info(f"Trade rejected: {trade_id} - {reason}")
        return ControlResult.ok()

    def _find_trade(self, trade_id: str) -> Optional[PendingTrade]:
        for trade in self._state.pending_trades:
            if trade.id == trade_id:
                return trade
        return None

    def _retry_deferred_trades(self) -> None:
        if self._state.mode != TradingMode.AUTONOMOUS:
            return
        for trade in self._state.pending_trades:
            if trade.status == TradeStatus.APPROVED:
                self._schedule_execution(trade.id)

    # ========================================================================
    # Execution
    # ========================================================================

    def _schedule_execution(self, trade_id: str) -> None:
        if trade_id in self._scheduled_trade_ids:
            return
        self._scheduled_trade_ids.add(trade_id)
        task = asyncio.create_task(self._execute_trade(trade_id))
        self._execution_tasks.add(task)
        task.add_done_callback(self._execution_tasks.discard)

    async def _execute_trade(self, trade_id: str) -> None:
        try:
            async with self._execution_lock:
                await self._execute_locked(trade_id)
        finally:
            self._scheduled_trade_ids.discard(trade_id)

    async def _execute_locked(self, trade_id: str) -> None:
        trade = self._find_trade(trade_id)
        if trade is None or trade.status != TradeStatus.APPROVED:
            return
        if self._state.mode != TradingMode.AUTONOMOUS:
            logger.info(f"Not executing {trade_id}: mode is {self._state.mode.value}")
            return

        self._roll_session_day()
        gate = check_execution_gate(self._state, self._config, trade, self._clock.now())

        if gate.verdict == GateVerdict.DEFER:
            logger.info(f"Trade {trade_id} deferred: {gate.reason}")
            return
        if gate.verdict == GateVerdict.PAUSE:
            if not self._state.is_paused or self._state.pause_reason != gate.reason:
                self.pause(gate.reason)
            self._fail_trade(trade, gate.reason)
            return
        if gate.verdict == GateVerdict.FAIL:
            self._fail_trade(trade, gate.reason)
            return

        trade.status = TradeStatus.EXECUTING
        logger.info(f"Executing trade {trade_id}: {trade.action.describe()}")

        try:
            tx_ids = await self._executor.execute_actions(
                [trade.action], max_slippage=self._config.max_slippage
            )
        except Exception as e:
            self._record_execution_failure(trade, e)
            return

        now = self._clock.now()
        trade.status = TradeStatus.COMPLETED
        trade.executed_at = now
        trade.tx_id = tx_ids[0] if tx_ids else None

        self._state.trades_executed_today += 1
        self._state.total_volume_today += trade.estimated_value_usd
        self._state.last_trade_time = now
        self._state.consecutive_losses = 0

        self._emit(TradingEventType.TRADE_EXECUTED, {
            "trade": trade.model_dump(mode="json"),
            "tx_id": trade.tx_id,
            "stats": {
                "trades_executed_today": self._state.trades_executed_today,
                "total_volume_today": self._state.total_volume_today,
            },
        })
        logger.info(f"Trade executed: {trade_id} tx {trade.tx_id}")

    def _record_execution_failure(self, trade: PendingTrade, error: Exception) -> None:
        trade.status = TradeStatus.FAILED
        trade.error = str(error)
        self._state.consecutive_losses += 1
        self._errors.handle(ExecutionError(f"Trade {trade.id} failed: {error}", trade_id=trade.id, cause=error))

        if self._state.consecutive_losses >= self._config.max_consecutive_losses:
            self.pause(loss_breaker_reason(self._state.consecutive_losses))

        self._emit(TradingEventType.TRADE_FAILED, {
            "trade": trade.model_dump(mode="json"),
            "error": str(error),
            "consecutive_losses": self._state.consecutive_losses,
        })

    def _fail_trade(self, trade: PendingTrade, reason: str) -> None:
        trade.status = TradeStatus.FAILED
        trade.error = reason
        self._emit(TradingEventType.TRADE_FAILED, {
            "trade": trade.model_dump(mode="json"),
            "error": reason,
            "consecutive_losses": self._state.consecutive_losses,
        })
        logger.warning(f"Trade {trade.id} failed at gate: {reason}")

    def _roll_session_day(self) -> None:
        today = self._clock.today().isoformat()
        if self._state.session_day == today:
            return
        logger.info(f"New trading day {today}, resetting daily counters")
        self._state.session_day = today
        self._state.trades_executed_today = 0
        self._state.total_volume_today = 0.0

    # ========================================================================
    # Getters
    # ========================================================================

    def get_state(self) -> TradingState:
        return self._state.model_copy(deep=True)

    def get_config(self) -> TradingConfig:
        return self._config.model_copy()

    def get_pending_trades(self) -> List[PendingTrade]:
        return [t.model_copy() for t in self._state.pending_trades if t.status == TradeStatus.PENDING]

    def get_trade_history(self) -> List[PendingTrade]:
        return [t.model_copy() for t in self._state.pending_trades]

    def get_error_summary(self) -> Dict[str, Any]:
        return self._errors.snapshot()

    def get_status_summary(self) -> str:
        """Plain-text summary for operators."""
        s = self._state
        if not s.is_active:
            status = "Inactive"
        elif s.is_paused:
            status = "Paused"
        else:
            status = "Active"

        lines = [
            f"Trading mode: {s.mode.value.upper()}",
            f"Status: {status}",
        ]
        if s.pause_reason:
            lines.append(f"Pause reason: {s.pause_reason}")

        lines += [
            "",
            "Session",
            f"Started: {s.session_start_time.isoformat()}",
            f"Trades today: {s.trades_executed_today}",
            f"Volume today: ${s.total_volume_today:.2f}",
            f"Consecutive losses: {s.consecutive_losses}",
            "",
            "Portfolio",
        ]
        if s.portfolio is not None:
            lines.append(f"Value: ${s.portfolio.total_value:.2f}")
            lines.append(f"Weighted APY: {s.portfolio.weighted_apy:.2f}%")
        else:
            lines.append("No portfolio data")
        lines += [
            f"Drawdown: {s.current_drawdown:.2f}%",
            f"Peak value: ${s.peak_value:.2f}",
            "",
            "Pending trades",
        ]

        pending = [t for t in s.pending_trades if t.status == TradeStatus.PENDING]
        if pending:
            for t in pending:
                lines.append(f"- {t.id}: ${t.estimated_value_usd:.2f} "
                             f"({'needs approval' if t.requires_approval else 'auto'})")
        else:
            lines.append("No pending trades")

        if s.current_yields:
            lines += ["", "Top opportunities"]
            for i, y in enumerate(s.current_yields[:3], 1):
                lines.append(f"{i}. {y.asset} ({y.protocol}): {y.adjusted_apy:.2f}% adj | "
                             f"Risk: {y.risk_score.overall}")

        return "\n".join(lines)

    def _stats_snapshot(self) -> Dict[str, Any]:
        s = self._state
        return {
            "mode": s.mode.value,
            "is_active": s.is_active,
            "trades_executed_today": s.trades_executed_today,
            "total_volume_today": s.total_volume_today,
            "consecutive_losses": s.consecutive_losses,
            "current_drawdown": s.current_drawdown,
            "peak_value": s.peak_value,
        }

    def _emit(self, event_type: TradingEventType, data: Dict[str, Any]) -> None:
        self._bus.emit(event_type, data, timestamp=self._clock.now())
