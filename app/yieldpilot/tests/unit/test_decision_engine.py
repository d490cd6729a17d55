"""
Unit tests for the decision engine.
Pure decision logic over synthetic ranked opportunities.
"""

import random
from collections import defaultdict

import pytest

from app.yieldpilot.config import StrategyConfig
from app.yieldpilot.core.clock import FakeClock
from app.yieldpilot.decision import DecisionEngine
from app.yieldpilot.tests.fixtures.factories import T0, make_opportunity, make_portfolio, make_position
from app.yieldpilot.types import ActionType, DecisionType, Portfolio, RiskChange


def engine_for(**strategy):
    return DecisionEngine(StrategyConfig(**strategy), clock=FakeClock(initial_time=T0))


class TestHoldAndEnter:
    """Tests for the hold and enter branches."""

    def test_no_opportunity_within_low_tolerance_holds(self):
        engine = engine_for(risk_tolerance="low")
        ranked = [make_opportunity("newfarm", "BONK", apy=40.0, overall=80)]

        decision = engine.decide(make_portfolio(make_position("kamino", "USDC", 1000, 6.0)), ranked)

        assert decision.type == DecisionType.HOLD
        assert decision.actions == []
        assert "no opportunities within risk tolerance" in decision.summary.lower()
        assert decision.confidence == 0.9

    def test_no_eligible_opportunity_holds_even_when_empty(self):
        engine = engine_for(risk_tolerance="low")

        decision = engine.decide(Portfolio.empty(), [make_opportunity("newfarm", "BONK", 40.0, 80)])

        assert decision.type == DecisionType.HOLD

    def test_empty_portfolio_enters_best_opportunity(self):
        engine = engine_for()
        ranked = [make_opportunity("kamino", "USDC", apy=8.5, overall=25)]

        decision = engine.decide(Portfolio.empty(), ranked)

        assert decision.type == DecisionType.ENTER
        assert decision.confidence == 0.8
        assert len(decision.actions) == 1
        action = decision.actions[0]
        assert action.type == ActionType.DEPOSIT
        assert action.to.protocol == "kamino"
        assert action.to.asset == "USDC"
        assert action.from_ is None
        assert action.estimated_value_usd == 0
        assert decision.timestamp == T0

    def test_enter_is_valued_at_available_cash(self):
        engine = engine_for()
        ranked = [make_opportunity("kamino", "USDC", apy=8.5, overall=25)]

        decision = engine.decide(Portfolio.from_positions([], cash_usd=9990), ranked)

        assert decision.type == DecisionType.ENTER
        assert decision.actions[0].to.amount == 0
        assert decision.actions[0].estimated_value_usd == 9990

    def test_enter_picks_top_ranked_eligible(self):
        engine = engine_for(risk_tolerance="medium")
        ranked = [
            make_opportunity("newfarm", "BONK", apy=90.0, overall=78),
            make_opportunity("drift", "USDC", apy=9.0, overall=30),
            make_opportunity("kamino", "USDC", apy=12.0, overall=25),
        ]

        decision = engine.decide(Portfolio.empty(), ranked)

        assert decision.actions[0].to.protocol == "kamino"
        assert decision.top_opportunity.protocol == "kamino"

    def test_improvement_below_threshold_holds(self):
        engine = engine_for(rebalance_threshold=1.0)
        portfolio = make_portfolio(make_position("kamino", "USDC", 1000, 8.0))
        ranked = [
            make_opportunity("kamino", "USDC", apy=8.0, overall=20),
            make_opportunity("drift", "USDC", apy=8.6, overall=20),
        ]

        decision = engine.decide(portfolio, ranked)

        assert decision.type == DecisionType.HOLD
        assert decision.confidence == 0.85
        assert any("below threshold" in line for line in decision.reasoning)

    def test_threshold_floor_is_one_percent(self):
        engine = engine_for(rebalance_threshold=0.1)
        portfolio = make_portfolio(make_position("kamino", "USDC", 1000, 8.0))
        ranked = [
            make_opportunity("kamino", "USDC", apy=8.0, overall=0),
            make_opportunity("drift", "USDC", apy=8.5, overall=0),
        ]

        decision = engine.decide(portfolio, ranked)

        assert decision.type == DecisionType.HOLD


class TestRebalance:
    """Tests for the rebalance branch."""

    def test_underperforming_position_moves_to_best(self):
        engine = engine_for(rebalance_threshold=1.0, max_protocol_concentration=1.0)
        portfolio = make_portfolio(make_position("marinade", "mSOL", 1000, 7.2, amount=5))
        ranked = [make_opportunity("kamino", "USDC", apy=12.0, overall=25, adjusted_apy=11.0)]

        decision = engine.decide(portfolio, ranked)

        assert decision.type == DecisionType.REBALANCE
        assert len(decision.actions) == 1
        action = decision.actions[0]
        assert action.type == ActionType.WITHDRAW
        assert (action.from_.protocol, action.from_.asset) == ("marinade", "mSOL")
        assert (action.to.protocol, action.to.asset) == ("kamino", "USDC")
        assert action.from_.amount == 5
        assert action.expected_apy_gain == pytest.approx(3.8)
        assert action.estimated_value_usd == 1000

    def test_matched_position_uses_its_adjusted_apy(self):
        engine = engine_for(max_protocol_concentration=1.0)
        portfolio = make_portfolio(make_position("marinade", "mSOL", 1000, 7.2))
        ranked = [
            make_opportunity("kamino", "USDC", apy=12.0, overall=25, adjusted_apy=11.0),
            make_opportunity("marinade", "mSOL", apy=7.2, overall=15, adjusted_apy=6.5),
        ]

        decision = engine.decide(portfolio, ranked)

        assert decision.actions[0].expected_apy_gain == pytest.approx(4.5)

    def test_concentration_limit_skips_move(self):
        engine = engine_for(max_protocol_concentration=0.5)
        portfolio = make_portfolio(
            make_position("marinade", "mSOL", 600, 5.0),
            make_position("jito", "JitoSOL", 400, 5.0),
        )
        ranked = [make_opportunity("kamino", "USDC", apy=14.0, overall=20, adjusted_apy=12.0)]

        decision = engine.decide(portfolio, ranked)

        # marinade alone would be 60% in kamino; jito alone is 40%
        assert decision.type == DecisionType.REBALANCE
        assert [a.from_.protocol for a in decision.actions] == ["jito"]
        assert any("concentration limit" in line for line in decision.reasoning)

    def test_concentration_counts_moves_planned_in_same_decision(self):
        engine = engine_for(max_protocol_concentration=0.5)
        portfolio = make_portfolio(
            make_position("marinade", "mSOL", 300, 5.0),
            make_position("jito", "JitoSOL", 300, 5.0),
            make_position("drift", "USDC", 400, 5.0),
        )
        ranked = [make_opportunity("kamino", "USDC", apy=14.0, overall=20, adjusted_apy=12.0)]

        decision = engine.decide(portfolio, ranked)

        moved = sum(a.estimated_value_usd for a in decision.actions)
        assert moved / portfolio.total_value <= 0.5
        assert len(decision.actions) == 1

    def test_all_moves_blocked_holds(self):
        engine = engine_for(max_protocol_concentration=0.3)
        portfolio = make_portfolio(make_position("marinade", "mSOL", 1000, 5.0))
        ranked = [make_opportunity("kamino", "USDC", apy=14.0, overall=20, adjusted_apy=12.0)]

        decision = engine.decide(portfolio, ranked)

        assert decision.type == DecisionType.HOLD
        assert decision.actions == []
        assert decision.confidence == 0.7

    def test_risk_analysis_and_confidence(self):
        engine = engine_for(max_protocol_concentration=1.0)
        portfolio = make_portfolio(make_position("marinade", "mSOL", 1000, 7.2))
        ranked = [make_opportunity("kamino", "USDC", apy=12.0, overall=25, adjusted_apy=11.0)]

        decision = engine.decide(portfolio, ranked)

        assert decision.risk_analysis.current_risk_score == 50
        assert decision.risk_analysis.proposed_risk_score == 25
        assert decision.risk_analysis.risk_change == RiskChange.DECREASED
        # 0.75 + (0.25 - 25/400) + 0.05 = 0.9875, clamped
        assert decision.confidence == 0.95
        assert decision.projected_apy == 12.0
        assert decision.projected_risk_adjusted_apy == 11.0

    def test_confidence_penalized_for_low_tvl_and_higher_risk(self):
        engine = engine_for(max_protocol_concentration=1.0, risk_tolerance="high")
        portfolio = make_portfolio(make_position("marinade", "mSOL", 1000, 4.0))
        ranked = [
            make_opportunity("newfarm", "USDC", apy=30.0, overall=70, tvl=500_000),
            make_opportunity("marinade", "mSOL", apy=4.0, overall=15),
        ]

        decision = engine.decide(portfolio, ranked)

        assert decision.risk_analysis.risk_change == RiskChange.INCREASED
        # 0.75 + (0.25 - 70/400) - 0.1 - 0.15 = 0.575
        assert decision.confidence == pytest.approx(0.575)

    def test_config_override_for_one_call(self):
        engine = engine_for(risk_tolerance="high")
        ranked = [make_opportunity("newfarm", "BONK", apy=40.0, overall=60)]

        assert engine.decide(Portfolio.empty(), ranked).type == DecisionType.ENTER
        low = StrategyConfig(risk_tolerance="low")
        assert engine.decide(Portfolio.empty(), ranked, config=low).type == DecisionType.HOLD
        assert engine.decide(Portfolio.empty(), ranked).type == DecisionType.ENTER

    def test_never_produces_exit(self):
        engine = engine_for(max_protocol_concentration=1.0)
        rng = random.Random(3)
        for _ in range(50):
            portfolio = make_portfolio(make_position("marinade", "mSOL", rng.uniform(0, 1000), rng.uniform(0, 20)))
            ranked = [make_opportunity("kamino", "USDC", rng.uniform(0, 30), rng.randint(0, 100))]
            assert engine.decide(portfolio, ranked).type != DecisionType.EXIT


class TestDecisionProperties:
    """Randomized properties across portfolios and opportunity sets."""

    PROTOCOLS = ["kamino", "drift", "jito", "marinade", "mango", "orca"]
    ASSETS = ["USDC", "mSOL", "JitoSOL", "USDT"]

    def _random_case(self, rng):
        positions = [
            make_position(rng.choice(self.PROTOCOLS), rng.choice(self.ASSETS),
                          rng.uniform(100, 10_000), rng.uniform(0, 12))
            for _ in range(rng.randint(0, 5))
        ]
        ranked = [
            make_opportunity(rng.choice(self.PROTOCOLS), rng.choice(self.ASSETS),
                             rng.uniform(2, 40), rng.randint(5, 60), tvl=rng.uniform(100_000, 1e9))
            for _ in range(rng.randint(1, 6))
        ]
        strategy = StrategyConfig(
            risk_tolerance=rng.choice(["low", "medium", "high"]),
            rebalance_threshold=rng.uniform(0, 3),
            max_protocol_concentration=rng.uniform(0.2, 1.0),
        )
        return make_portfolio(*positions), ranked, strategy

    def test_concentration_never_exceeded(self):
        rng = random.Random(42)
        engine = engine_for()

        for _ in range(500):
            portfolio, ranked, strategy = self._random_case(rng)
            decision = engine.decide(portfolio, ranked, config=strategy)
            if decision.type != DecisionType.REBALANCE:
                continue

            values = defaultdict(float)
            for position in portfolio.positions:
                values[position.protocol] += position.value_usd
            inflows = defaultdict(float)
            for action in decision.actions:
                if action.from_.protocol == action.to.protocol:
                    continue
                values[action.from_.protocol] -= action.estimated_value_usd
                values[action.to.protocol] += action.estimated_value_usd
                inflows[action.to.protocol] += action.estimated_value_usd

            for protocol in inflows:
                share = values[protocol] / portfolio.total_value
                assert share <= strategy.max_protocol_concentration + 1e-9

    def test_enter_iff_portfolio_empty(self):
        rng = random.Random(11)
        engine = engine_for()

        for _ in range(300):
            portfolio, ranked, strategy = self._random_case(rng)
            eligible = [o for o in ranked if o.risk_score.overall <= strategy.max_risk_score]
            decision = engine.decide(portfolio, ranked, config=strategy)
            if not eligible:
                assert decision.type == DecisionType.HOLD
                continue

            assert (decision.type == DecisionType.ENTER) == (portfolio.total_value == 0)

    def test_hold_never_carries_actions(self):
        rng = random.Random(5)
        engine = engine_for()

        for _ in range(300):
            portfolio, ranked, strategy = self._random_case(rng)
            decision = engine.decide(portfolio, ranked, config=strategy)
            if decision.type == DecisionType.HOLD:
                assert decision.actions == []
            else:
                assert decision.actions
