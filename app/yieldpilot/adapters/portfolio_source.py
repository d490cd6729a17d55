"""
Static portfolio source.
"""

from typing import List, Optional

from ..types import Portfolio, Position


class StaticPortfolioSource:
    """Serves a fixed portfolio snapshot that callers can replace."""

    def __init__(self, portfolio: Optional[Portfolio] = None):
        self._portfolio = portfolio or Portfolio.empty()

    @classmethod
    def from_positions(cls, positions: List[Position]) -> "StaticPortfolioSource":
        return cls(Portfolio.from_positions(positions))

    def set_portfolio(self, portfolio: Portfolio) -> None:
        self._portfolio = portfolio

    async def fetch_portfolio(self) -> Portfolio:
        return self._portfolio.model_copy(deep=True)
