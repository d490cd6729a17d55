"""
Interfaces and protocols for the controller's external collaborators.
Defines contracts for data sources, execution and audit storage.
"""

from typing import Any, Dict, List, Protocol, runtime_checkable

from app.yieldpilot.types import (
    Decision,
    Portfolio,
    RebalanceAction,
    RiskAdjustedOpportunity,
    YieldOpportunity,
)


@runtime_checkable
class RawYieldSource(Protocol):
    """Protocol for fetchers of unscored yield quotes."""

    async def fetch_yields(self) -> List[YieldOpportunity]:
        """Fetch raw opportunities. May raise on network failure."""
        ...


@runtime_checkable
class YieldSource(Protocol):
    """Protocol for sources of ranked, risk-adjusted opportunities."""

    async def fetch_ranked_yields(self) -> List[RiskAdjustedOpportunity]:
        """Fetch opportunities sorted best first. May raise."""
        ...


@runtime_checkable
class PortfolioSource(Protocol):
    """Protocol for portfolio snapshot providers."""

    async def fetch_portfolio(self) -> Portfolio:
        """Fetch the current portfolio. May raise."""
        ...


@runtime_checkable
class Executor(Protocol):
    """Protocol for trade executors."""

    async def execute_actions(
        self,
        actions: List[RebalanceAction],
        max_slippage: float
    ) -> List[str]:
        """
        Execute actions and return transaction ids.

        Raises on failure. Retrying is not assumed to be safe, and the
        executor enforces its own timeout.
        """
        ...


@runtime_checkable
class AuditStore(Protocol):
    """Protocol for decision audit trails."""

    async def record(self, decision: Decision, context: Dict[str, Any]) -> None:
        """Record a decision with its context. Best effort."""
        ...
