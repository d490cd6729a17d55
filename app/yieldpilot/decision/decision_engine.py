"""
Decision Engine

Compares the current portfolio against ranked, risk-adjusted opportunities
and proposes a Decision: hold, enter or rebalance. The engine is a pure
function of its inputs; it never talks to an executor.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..config import StrategyConfig
from ..core.clock import Clock
from ..scoring.risk_scorer import RiskScorer, format_usd
from ..types import (
    ActionLeg,
    ActionType,
    Decision,
    DecisionType,
    OpportunitySummary,
    Portfolio,
    Position,
    RebalanceAction,
    RiskAdjustedOpportunity,
    RiskAnalysis,
    RiskChange,
)


logger = logging.getLogger(__name__)


# Risk-adjusted discount assumed for positions the ranking does not cover
UNKNOWN_POSITION_DISCOUNT = 0.7
UNKNOWN_POSITION_RISK = 50

NO_ELIGIBLE_REASON = "No opportunities within risk tolerance"


class DecisionEngine:
    """
    Risk-adjusted allocation decisions.

    - Filters opportunities by the strategy's risk tolerance
    - Enters the best opportunity when the portfolio is empty
    - Proposes moves out of underperforming positions when the improvement
      clears the rebalance threshold and concentration limits allow it
    """

    def __init__(self, strategy: StrategyConfig, clock: Optional[Clock] = None):
        self.strategy = strategy
        self.clock = clock
        self._decisions_made = 0

        logger.info(f"DecisionEngine initialized with strategy {strategy.name} "
                    f"(risk tolerance {strategy.risk_tolerance})")

    @property
    def decisions_made(self) -> int:
        return self._decisions_made

    def decide(
        self,
        portfolio: Portfolio,
        ranked: List[RiskAdjustedOpportunity],
        config: Optional[StrategyConfig] = None,
    ) -> Decision:
        """
        Produce a decision for the portfolio.

        Args:
            portfolio: Current holdings
            ranked: Risk-adjusted opportunities, normally best first
            config: Strategy override for this call only

        Returns:
            Decision with actions, reasoning lines and risk analysis
        """
        strategy = config or self.strategy
        self._decisions_made += 1
        timestamp = self.clock.now() if self.clock else datetime.now(timezone.utc)

        max_risk = strategy.max_risk_score
        eligible = [o for o in ranked if o.risk_score.overall <= max_risk]
        current_risk = self._portfolio_risk_score(portfolio, ranked)

        if not eligible:
            logger.info(f"No opportunities within risk tolerance (max score {max_risk})")
            return Decision(
                timestamp=timestamp,
                type=DecisionType.HOLD,
                reasoning=[NO_ELIGIBLE_REASON],
                risk_analysis=RiskAnalysis(
                    current_risk_score=current_risk,
                    proposed_risk_score=current_risk,
                    risk_change=RiskChange.UNCHANGED,
                ),
                confidence=0.9,
                projected_apy=portfolio.weighted_apy,
                projected_risk_adjusted_apy=portfolio.weighted_apy,
            )

        best = RiskScorer.sort_by_risk_adjusted_return(eligible)[0]
        reasoning = [
            f"Filtered {len(ranked)} opportunities down to {len(eligible)} "
            f"within risk tolerance (max score: {max_risk})",
        ]
        reasoning.extend(self._describe_best(best))
        summary = self._summarize(best)

        if portfolio.total_value == 0:
            return self._enter(best, portfolio, timestamp, reasoning, summary)

        current_adjusted = self._current_adjusted_apy(portfolio, ranked)
        improvement = best.adjusted_apy - current_adjusted
        threshold = strategy.effective_rebalance_threshold

        reasoning.append(f"Current portfolio risk-adjusted APY: {current_adjusted:.2f}%")
        reasoning.append(f"Potential improvement: {improvement:.2f}%")

        if improvement < threshold:
            reasoning.append(f"Improvement below threshold ({threshold}%), holding position")
            return Decision(
                timestamp=timestamp,
                type=DecisionType.HOLD,
                reasoning=reasoning,
                risk_analysis=RiskAnalysis(
                    current_risk_score=current_risk,
                    proposed_risk_score=current_risk,
                    risk_change=RiskChange.UNCHANGED,
                ),
                confidence=0.85,
                projected_apy=portfolio.weighted_apy,
                projected_risk_adjusted_apy=current_adjusted,
                top_opportunity=summary,
            )

        actions = self._plan_moves(portfolio, ranked, best, threshold,
                                   strategy.max_protocol_concentration, reasoning)

        if not actions:
            reasoning.append("No position qualifies for a move, holding")
            return Decision(
                timestamp=timestamp,
                type=DecisionType.HOLD,
                reasoning=reasoning,
                risk_analysis=RiskAnalysis(
                    current_risk_score=current_risk,
                    proposed_risk_score=current_risk,
                    risk_change=RiskChange.UNCHANGED,
                ),
                confidence=0.7,
                projected_apy=portfolio.weighted_apy,
                projected_risk_adjusted_apy=current_adjusted,
                top_opportunity=summary,
            )

        proposed_risk = best.risk_score.overall
        risk_change = _risk_change(current_risk, proposed_risk)

        return Decision(
            timestamp=timestamp,
            type=DecisionType.REBALANCE,
            actions=actions,
            reasoning=reasoning,
            risk_analysis=RiskAnalysis(
                current_risk_score=current_risk,
                proposed_risk_score=proposed_risk,
                risk_change=risk_change,
            ),
            confidence=self._rebalance_confidence(best, risk_change),
            projected_apy=best.apy,
            projected_risk_adjusted_apy=best.adjusted_apy,
            top_opportunity=summary,
        )

    def _enter(self, best: RiskAdjustedOpportunity, portfolio: Portfolio, timestamp: datetime,
               reasoning: List[str], summary: OpportunitySummary) -> Decision:
        reasoning.append(f"Portfolio is empty, entering {best.asset} on {best.protocol}")
        # Amount 0 deposits whatever cash the wallet holds
        action = RebalanceAction(
            type=ActionType.DEPOSIT,
            to=ActionLeg(protocol=best.protocol, asset=best.asset, amount=0),
            expected_apy_gain=best.adjusted_apy,
            estimated_value_usd=portfolio.cash_usd,
        )
        return Decision(
            timestamp=timestamp,
            type=DecisionType.ENTER,
            actions=[action],
            reasoning=reasoning,
            risk_analysis=RiskAnalysis(
                current_risk_score=0,
                proposed_risk_score=best.risk_score.overall,
                risk_change=_risk_change(0, best.risk_score.overall),
            ),
            confidence=0.8,
            projected_apy=best.apy,
            projected_risk_adjusted_apy=best.adjusted_apy,
            top_opportunity=summary,
        )

    def _plan_moves(
        self,
        portfolio: Portfolio,
        ranked: List[RiskAdjustedOpportunity],
        best: RiskAdjustedOpportunity,
        threshold: float,
        max_concentration: float,
        reasoning: List[str],
    ) -> List[RebalanceAction]:
        actions: List[RebalanceAction] = []
        # Value already committed to best.protocol by earlier moves in this decision
        planned_inflow = 0.0
        target_value = portfolio.protocol_value(best.protocol)

        for position in portfolio.positions:
            position_apy = self._position_adjusted_apy(position, ranked)
            gain = best.adjusted_apy - position_apy
            if gain < threshold:
                continue

            inflow = 0.0 if position.protocol == best.protocol else position.value_usd
            new_concentration = (target_value + planned_inflow + inflow) / portfolio.total_value

            if new_concentration > max_concentration:
                reasoning.append(
                    f"Would exceed protocol concentration limit for {best.protocol} "
                    f"({new_concentration:.0%} > {max_concentration:.0%}), "
                    f"skipping {position.asset} on {position.protocol}"
                )
                continue

            planned_inflow += inflow
            actions.append(RebalanceAction(
                type=ActionType.WITHDRAW,
                from_=ActionLeg(protocol=position.protocol, asset=position.asset, amount=position.amount),
                to=ActionLeg(protocol=best.protocol, asset=best.asset, amount=position.amount),
                expected_apy_gain=gain,
                estimated_value_usd=position.value_usd,
            ))
            reasoning.append(f"Move {position.asset} from {position.protocol} to {best.protocol} "
                             f"(${format_usd(position.value_usd)})")
            reasoning.append(f"  Expected risk-adjusted APY gain: +{gain:.2f}%")

        return actions

    @staticmethod
    def _describe_best(best: RiskAdjustedOpportunity) -> List[str]:
        lines = [
            f"Best risk-adjusted opportunity: {best.asset} on {best.protocol}",
            f"  Raw APY: {best.apy:.2f}% | Risk-adjusted: {best.adjusted_apy:.2f}%",
            f"  Risk score: {best.risk_score.overall}/100 | Sharpe ratio: {best.sharpe_ratio:.2f}",
        ]
        if best.risk_score.warnings:
            lines.append(f"  Warnings: {'; '.join(best.risk_score.warnings)}")
        if best.risk_score.positives:
            lines.append(f"  Positives: {'; '.join(best.risk_score.positives)}")
        return lines

    @staticmethod
    def _summarize(best: RiskAdjustedOpportunity) -> OpportunitySummary:
        return OpportunitySummary(
            protocol=best.protocol,
            asset=best.asset,
            raw_apy=best.apy,
            adjusted_apy=best.adjusted_apy,
            sharpe_ratio=best.sharpe_ratio,
            risk_score=best.risk_score.overall,
            warnings=list(best.risk_score.warnings),
            positives=list(best.risk_score.positives),
        )

    @staticmethod
    def _index(ranked: List[RiskAdjustedOpportunity]) -> Dict[Tuple[str, str], RiskAdjustedOpportunity]:
        index: Dict[Tuple[str, str], RiskAdjustedOpportunity] = {}
        for opportunity in ranked:
            index.setdefault(opportunity.key, opportunity)
        return index

    def _position_adjusted_apy(self, position: Position, ranked: List[RiskAdjustedOpportunity]) -> float:
        match = self._index(ranked).get((position.protocol, position.asset))
        return match.adjusted_apy if match is not None else position.current_apy

    def _current_adjusted_apy(self, portfolio: Portfolio, ranked: List[RiskAdjustedOpportunity]) -> float:
        if portfolio.total_value == 0 or not portfolio.positions:
            return 0.0

        index = self._index(ranked)
        weighted = 0.0
        for position in portfolio.positions:
            match = index.get((position.protocol, position.asset))
            apy = match.adjusted_apy if match is not None else position.current_apy * UNKNOWN_POSITION_DISCOUNT
            weighted += apy * position.value_usd / portfolio.total_value
        return weighted

    def _portfolio_risk_score(self, portfolio: Portfolio, ranked: List[RiskAdjustedOpportunity]) -> int:
        if portfolio.total_value == 0 or not portfolio.positions:
            return 0

        index = self._index(ranked)
        weighted = 0.0
        for position in portfolio.positions:
            match = index.get((position.protocol, position.asset))
            risk = match.risk_score.overall if match is not None else UNKNOWN_POSITION_RISK
            weighted += risk * position.value_usd / portfolio.total_value
        return min(100, max(0, int(math.floor(weighted + 0.5))))

    @staticmethod
    def _rebalance_confidence(best: RiskAdjustedOpportunity, risk_change: RiskChange) -> float:
        confidence = 0.75 + (0.25 - best.risk_score.overall / 400)
        if risk_change == RiskChange.DECREASED:
            confidence += 0.05
        elif risk_change == RiskChange.INCREASED:
            confidence -= 0.1
        if best.tvl < 1_000_000:
            confidence -= 0.15
        return min(0.95, max(0.3, confidence))


def _risk_change(current: int, proposed: int) -> RiskChange:
    if proposed < current:
        return RiskChange.DECREASED
    if proposed > current:
        return RiskChange.INCREASED
    return RiskChange.UNCHANGED
