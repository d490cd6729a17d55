"""
Yield sources.

ScoringYieldSource wraps any raw quote fetcher and ranks its output with
the RiskScorer, turning a RawYieldSource into the YieldSource the
controller consumes.
"""

import logging
from typing import Callable, List, Optional

from ..core.error_handling import DataFetchError
from ..core.interfaces import RawYieldSource
from ..scoring.risk_scorer import RiskScorer
from ..types import RiskAdjustedOpportunity, YieldOpportunity


logger = logging.getLogger(__name__)


class StaticYieldFeed:
    """Raw yield source serving a fixed, replaceable list of quotes."""

    def __init__(self, opportunities: Optional[List[YieldOpportunity]] = None):
        self._opportunities = list(opportunities or [])
        self.fetch_count = 0

    def set_opportunities(self, opportunities: List[YieldOpportunity]) -> None:
        self._opportunities = list(opportunities)

    async def fetch_yields(self) -> List[YieldOpportunity]:
        self.fetch_count += 1
        return list(self._opportunities)


class ScoringYieldSource:
    """Ranks raw quotes from a RawYieldSource."""

    def __init__(
        self,
        raw_source: RawYieldSource,
        scorer: Optional[RiskScorer] = None,
        on_ranked: Optional[Callable[[List[RiskAdjustedOpportunity]], None]] = None,
    ):
        self.raw_source = raw_source
        self.scorer = scorer or RiskScorer()
        self.on_ranked = on_ranked

    async def fetch_ranked_yields(self) -> List[RiskAdjustedOpportunity]:
        """
        Fetch and rank quotes.

        Raises:
            DataFetchError: If the raw source fails
        """
        try:
            raw = await self.raw_source.fetch_yields()
        except DataFetchError:
            raise
        except Exception as e:
            raise DataFetchError(f"Raw yield fetch failed: {e}", source=type(self.raw_source).__name__, cause=e)

        ranked = self.scorer.rank(raw)
        logger.debug(f"Scored {len(raw)} raw quotes")
        if self.on_ranked is not None:
            self.on_ranked(ranked)
        return ranked
