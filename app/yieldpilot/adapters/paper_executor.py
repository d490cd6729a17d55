"""
Paper executor for simulation.

Simulates capital movements between protocols against an in-memory
wallet, so the controller can run end to end without a chain. Positions
are USD-notional: amount equals value.
"""

import logging
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from ..core.clock import Clock, SystemClock
from ..core.error_handling import ExecutionError
from ..types import (
    ActionLeg,
    ActionType,
    Portfolio,
    Position,
    RebalanceAction,
    YieldOpportunity,
)


logger = logging.getLogger(__name__)


class PaperExecutor:
    """
    Paper wallet that executes rebalance actions and reports its portfolio.

    Implements both the Executor and the PortfolioSource protocols.
    """

    def __init__(
        self,
        initial_cash_usd: float = 10000.0,
        clock: Optional[Clock] = None,
        slippage_pct: float = 0.001,
        fee_pct: float = 0.0,
    ):
        self.clock = clock or SystemClock()
        self.cash_usd = initial_cash_usd
        self.positions: Dict[Tuple[str, str], Position] = {}
        self.rates: Dict[Tuple[str, str], float] = {}
        self.tx_history: List[Dict] = []

        # Simulation parameters
        self.slippage_pct = slippage_pct
        self.fee_pct = fee_pct

    def update_rates(self, opportunities: List[YieldOpportunity]) -> None:
        """Record current APYs so new positions carry a realistic rate."""
        for opportunity in opportunities:
            self.rates[(opportunity.protocol, opportunity.asset)] = opportunity.apy
        for key, position in self.positions.items():
            if key in self.rates:
                position.current_apy = self.rates[key]

    def open_position(self, protocol: str, asset: str, value_usd: float, apy: float) -> Position:
        """Open a position directly, outside of any trade, e.g. to seed a simulation."""
        self.rates[(protocol, asset)] = apy
        self._credit(ActionLeg(protocol=protocol, asset=asset), value_usd)
        return self.positions[(protocol, asset)]

    async def execute_actions(self, actions: List[RebalanceAction], max_slippage: float) -> List[str]:
        """
        Execute actions in order and return one transaction id per action.

        Raises:
            ExecutionError: If slippage exceeds the limit or funds are missing
        """
        if self.slippage_pct > max_slippage:
            raise ExecutionError(
                f"Simulated slippage {self.slippage_pct:.4f} exceeds limit {max_slippage:.4f}"
            )

        tx_ids = []
        for action in actions:
            if action.type == ActionType.DEPOSIT:
                self._deposit(action)
            elif action.type in (ActionType.WITHDRAW, ActionType.SWAP):
                self._withdraw(action)
            else:
                raise ExecutionError(f"Unsupported action type {action.type}")

            tx_id = f"paper_{uuid4().hex[:8]}"
            self.tx_history.append({
                "tx_id": tx_id,
                "action": action.describe(),
                "timestamp": self.clock.now(),
            })
            tx_ids.append(tx_id)
            logger.info(f"Paper execution {tx_id}: {action.describe()}")

        return tx_ids

    async def fetch_portfolio(self) -> Portfolio:
        return Portfolio.from_positions(
            [p.model_copy() for p in self.positions.values()],
            cash_usd=self.cash_usd,
        )

    def get_account_summary(self) -> Dict:
        portfolio_value = sum(p.value_usd for p in self.positions.values())
        return {
            "cash_usd": self.cash_usd,
            "portfolio_value_usd": portfolio_value,
            "equity_usd": self.cash_usd + portfolio_value,
            "positions": len(self.positions),
            "transactions": len(self.tx_history),
        }

    def _deposit(self, action: RebalanceAction) -> None:
        if action.to is None:
            raise ExecutionError("Deposit without a target")

        # Amount 0 means deposit all available cash
        amount = action.to.amount or self.cash_usd
        if amount <= 0 or amount > self.cash_usd:
            raise ExecutionError(f"Insufficient cash: need {amount:.2f}, have {self.cash_usd:.2f}")

        self.cash_usd -= amount
        self._credit(action.to, self._net(amount))

    def _withdraw(self, action: RebalanceAction) -> None:
        if action.from_ is None:
            raise ExecutionError("Withdraw without a source")

        key = (action.from_.protocol, action.from_.asset)
        position = self.positions.get(key)
        if position is None:
            raise ExecutionError(f"No position {action.from_.asset} on {action.from_.protocol}")

        amount = min(action.from_.amount or position.value_usd, position.value_usd)
        remaining = position.value_usd - amount
        if remaining <= 0:
            del self.positions[key]
        else:
            position.amount = remaining
            position.value_usd = remaining

        proceeds = self._net(amount)
        if action.to is not None:
            self._credit(action.to, proceeds)
        else:
            self.cash_usd += proceeds

    def _credit(self, leg: ActionLeg, value: float) -> None:
        key = (leg.protocol, leg.asset)
        existing = self.positions.get(key)
        if existing is not None:
            existing.amount += value
            existing.value_usd += value
            return

        self.positions[key] = Position(
            protocol=leg.protocol,
            asset=leg.asset,
            amount=value,
            value_usd=value,
            current_apy=self.rates.get(key, 0.0),
            entry_time=self.clock.now(),
        )

    def _net(self, amount: float) -> float:
        """Amount after slippage and fees."""
        return amount * (1 - self.slippage_pct) * (1 - self.fee_pct)
