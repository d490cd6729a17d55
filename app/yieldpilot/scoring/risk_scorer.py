"""
Risk Scorer

Scores yield opportunities on five risk factors and derives a risk-adjusted
APY, a Sharpe-like ratio and a recommendation tier, so that a modest yield
on a mature, deep protocol ranks above a large yield on an unaudited one.
"""

import logging
import math
from datetime import date, datetime, timezone
from functools import cmp_to_key
from typing import Dict, List, Optional, Union

from .protocol_profiles import ProtocolProfile, get_profile
from ..core.clock import Clock
from ..types import (
    Recommendation,
    RiskAdjustedOpportunity,
    RiskFactors,
    RiskScore,
    YieldOpportunity,
)


logger = logging.getLogger(__name__)


RISK_WEIGHTS: Dict[str, float] = {
    "smart_contract": 0.30,
    "liquidity": 0.20,
    "sustainability": 0.20,
    "counterparty": 0.15,
    "asset_volatility": 0.15,
}

STABLECOIN_MARKERS = ("usd", "usdc", "usdt", "dai", "pyusd", "usdy")

# Opportunities closer than this in adjusted APY are ordered by Sharpe ratio
TIE_BREAK_APY = 0.5


def _clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(min(high, max(low, value)))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_usd(amount: float) -> str:
    """Compact USD amount: 1.2B, 350.0M, 12.5K."""
    if amount >= 1_000_000_000:
        return f"{amount / 1_000_000_000:.1f}B"
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.1f}K"
    return f"{amount:.0f}"


class RiskScorer:
    """
    Stateless risk scorer for yield opportunities.

    Scores are reproducible for a given day: protocol age and incident
    recency are measured against the injected clock (or an explicit
    as_of date), never against an ambient wall clock.
    """

    def __init__(
        self,
        profiles: Optional[Dict[str, ProtocolProfile]] = None,
        risk_free_rate: float = 4.0,
        clock: Optional[Clock] = None,
    ):
        self.profiles = profiles
        self.risk_free_rate = risk_free_rate
        self.clock = clock

    def score(self, opportunity: YieldOpportunity, as_of: Optional[Union[date, datetime]] = None) -> RiskScore:
        """Compute the composite risk score of an opportunity."""
        today = self._resolve_day(as_of)
        profile = get_profile(opportunity.protocol, self.profiles)
        warnings: List[str] = []
        positives: List[str] = []

        factors = RiskFactors(
            smart_contract=self._smart_contract_risk(profile, today, warnings, positives),
            liquidity=self._liquidity_risk(opportunity.tvl, warnings, positives),
            sustainability=self._sustainability_risk(opportunity, warnings, positives),
            counterparty=self._counterparty_risk(profile, warnings, positives),
            asset_volatility=self._asset_volatility_risk(opportunity, warnings, positives),
        )

        overall = _round_half_up(sum(
            getattr(factors, name) * weight for name, weight in RISK_WEIGHTS.items()
        ))

        return RiskScore(
            overall=_clamp(overall),
            factors=factors,
            confidence=0.4 if profile.is_unknown else 0.8,
            warnings=warnings,
            positives=positives,
        )

    def adjusted_apy(self, apy: float, overall: int) -> float:
        """APY after a risk penalty of overall/200, so at most halved."""
        return max(0.0, apy * (1 - overall / 200))

    def sharpe_ratio(self, apy: float, overall: int) -> float:
        """Excess return over the risk-free rate per ten points of risk."""
        return (apy - self.risk_free_rate) / (max(overall, 1) / 10)

    @staticmethod
    def recommendation(adjusted_apy: float, overall: int, sharpe_ratio: float) -> Recommendation:
        if overall > 70:
            return Recommendation.AVOID
        if overall > 55:
            return Recommendation.WEAK
        if sharpe_ratio > 3 and adjusted_apy > 8 and overall < 35:
            return Recommendation.STRONG
        if sharpe_ratio > 2 and adjusted_apy > 5:
            return Recommendation.MODERATE
        return Recommendation.WEAK

    def analyze(self, opportunity: YieldOpportunity, as_of: Optional[Union[date, datetime]] = None) -> RiskAdjustedOpportunity:
        """Enrich an opportunity with its risk analysis."""
        risk_score = self.score(opportunity, as_of)
        adjusted = self.adjusted_apy(opportunity.apy, risk_score.overall)
        sharpe = self.sharpe_ratio(opportunity.apy, risk_score.overall)

        reasoning = [
            f"Raw APY: {opportunity.apy:.2f}% -> Risk-adjusted: {adjusted:.2f}%",
            f"Risk score: {risk_score.overall}/100 (Sharpe: {sharpe:.2f})",
        ]
        if risk_score.positives:
            reasoning.append(f"Positives: {', '.join(risk_score.positives)}")
        if risk_score.warnings:
            reasoning.append(f"Warnings: {', '.join(risk_score.warnings)}")

        return RiskAdjustedOpportunity(
            **opportunity.model_dump(include=set(YieldOpportunity.model_fields)),
            risk_score=risk_score,
            adjusted_apy=adjusted,
            sharpe_ratio=sharpe,
            recommendation=self.recommendation(adjusted, risk_score.overall, sharpe),
            reasoning=reasoning,
        )

    def analyze_many(self, opportunities: List[YieldOpportunity],
                     as_of: Optional[Union[date, datetime]] = None) -> List[RiskAdjustedOpportunity]:
        today = self._resolve_day(as_of)
        return [self.analyze(opportunity, today) for opportunity in opportunities]

    def rank(self, opportunities: List[YieldOpportunity],
             as_of: Optional[Union[date, datetime]] = None) -> List[RiskAdjustedOpportunity]:
        """Score and sort opportunities, best risk-adjusted return first."""
        ranked = self.sort_by_risk_adjusted_return(self.analyze_many(opportunities, as_of))
        logger.debug(f"Ranked {len(ranked)} opportunities")
        return ranked

    @staticmethod
    def sort_by_risk_adjusted_return(
        opportunities: List[RiskAdjustedOpportunity],
    ) -> List[RiskAdjustedOpportunity]:
        def compare(a: RiskAdjustedOpportunity, b: RiskAdjustedOpportunity) -> float:
            if abs(b.adjusted_apy - a.adjusted_apy) > TIE_BREAK_APY:
                return b.adjusted_apy - a.adjusted_apy
            return b.sharpe_ratio - a.sharpe_ratio

        return sorted(opportunities, key=cmp_to_key(compare))

    def top_recommendations(
        self,
        opportunities: List[YieldOpportunity],
        count: int = 5,
        max_risk: int = 60,
    ) -> List[RiskAdjustedOpportunity]:
        """Best opportunities with an overall risk score at or below max_risk."""
        analyzed = [o for o in self.analyze_many(opportunities) if o.risk_score.overall <= max_risk]
        return self.sort_by_risk_adjusted_return(analyzed)[:count]

    def _resolve_day(self, as_of: Optional[Union[date, datetime]]) -> date:
        if isinstance(as_of, datetime):
            return as_of.date()
        if isinstance(as_of, date):
            return as_of
        if self.clock is not None:
            return self.clock.today()
        return datetime.now(timezone.utc).date()

    # ------------------------------------------------------------------
    # Individual factors
    # ------------------------------------------------------------------

    def _smart_contract_risk(self, profile: ProtocolProfile, today: date,
                             warnings: List[str], positives: List[str]) -> int:
        risk = profile.base_risk_score

        if not profile.audited:
            risk += 30
            warnings.append("Protocol not audited")
        elif profile.audit_firms:
            positives.append(f"Audited by {', '.join(profile.audit_firms)}")
        else:
            positives.append("Audited")

        if profile.historical_incidents > 0 and profile.last_incident_date:
            days_since_incident = (today - profile.last_incident_date).days
            if days_since_incident < 365:
                risk += 20
                warnings.append("Security incident within past year")
            elif days_since_incident < 730:
                risk += 10
            else:
                positives.append("No incidents in 2+ years")

        age_days = (today - profile.launch_date).days
        if age_days < 180:
            risk += 25
            warnings.append("Protocol less than 6 months old")
        elif age_days > 730:
            risk -= 10
            positives.append("Battle-tested (2+ years)")

        return _clamp(risk)

    def _liquidity_risk(self, tvl: float, warnings: List[str], positives: List[str]) -> int:
        if tvl < 100_000:
            warnings.append(f"Very low TVL (${format_usd(tvl)})")
            return 90
        if tvl < 1_000_000:
            warnings.append(f"Low TVL (${format_usd(tvl)})")
            return 60
        if tvl < 10_000_000:
            return 40
        if tvl < 100_000_000:
            positives.append(f"Strong TVL (${format_usd(tvl)})")
            return 20
        positives.append(f"Excellent TVL (${format_usd(tvl)})")
        return 10

    def _sustainability_risk(self, opportunity: YieldOpportunity,
                             warnings: List[str], positives: List[str]) -> int:
        apy = opportunity.apy
        if apy > 100:
            risk = 90
            warnings.append(f"Extremely high APY ({apy:.1f}%) likely unsustainable")
        elif apy > 50:
            risk = 70
            warnings.append("Very high APY may not be sustainable")
        elif apy > 25:
            risk = 40
        elif apy > 10:
            risk = 20
            positives.append("APY in sustainable range")
        else:
            risk = 10
            positives.append("Conservative, sustainable APY")

        apy_base = opportunity.metadata.get("apy_base")
        apy_reward = opportunity.metadata.get("apy_reward")
        if apy_base and apy_reward:
            reward_ratio = apy_reward / (apy_base + apy_reward)
            if reward_ratio > 0.8:
                risk += 20
                warnings.append("APY heavily dependent on token rewards")
            elif reward_ratio < 0.3:
                positives.append("APY mostly from organic yield")

        return _clamp(risk)

    def _counterparty_risk(self, profile: ProtocolProfile,
                           warnings: List[str], positives: List[str]) -> int:
        if profile.centralization_risk == "high":
            risk = 60
            warnings.append("Centralization concerns")
        elif profile.centralization_risk == "medium":
            risk = 35
        else:
            risk = 15
            positives.append("Decentralized governance")

        if profile.insurance_fund:
            positives.append("Insurance fund available")
        else:
            risk += 10

        return _clamp(risk)

    def _asset_volatility_risk(self, opportunity: YieldOpportunity,
                               warnings: List[str], positives: List[str]) -> int:
        asset = opportunity.asset.lower()

        if opportunity.metadata.get("stablecoin") or any(m in asset for m in STABLECOIN_MARKERS):
            positives.append("Stablecoin - low volatility")
            return 10
        if "sol" in asset or "eth" in asset:
            return 40
        if "btc" in asset:
            return 35
        warnings.append("Volatile asset")
        return 65
