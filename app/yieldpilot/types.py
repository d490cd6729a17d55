"""
Type definitions for the yield pilot.

This module contains all Pydantic models and type definitions used across
the allocator, including yield opportunities, risk scores, portfolio
snapshots, decisions, pending trades and controller events.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

UUID = uuid.UUID
uuid4 = uuid.uuid4
Enum = enum.Enum


# ============================================================================
# Base Types and Enums
# ============================================================================

class RiskBucket(str, Enum):
    """Coarse risk bucket reported by the yield source"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class YieldType(str, Enum):
    """Where the yield comes from"""
    TRADING_FEES = "trading-fees"
    LENDING = "lending"
    STAKING = "staking"
    LIQUIDITY = "liquidity"


class Recommendation(str, Enum):
    """Recommendation tier for a risk-adjusted opportunity"""
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    AVOID = "avoid"


class ActionType(str, Enum):
    """Rebalance action type"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    SWAP = "swap"


class DecisionType(str, Enum):
    """Decision type produced by the decision engine"""
    HOLD = "hold"
    ENTER = "enter"
    REBALANCE = "rebalance"
    EXIT = "exit"


class RiskChange(str, Enum):
    """Direction of portfolio risk after a decision"""
    INCREASED = "increased"
    DECREASED = "decreased"
    UNCHANGED = "unchanged"


class TradingMode(str, Enum):
    """Controller operating mode"""
    MANUAL = "manual"
    MONITORING = "monitoring"
    AUTONOMOUS = "autonomous"


class TradeStatus(str, Enum):
    """Pending trade lifecycle status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class TradingEventType(str, Enum):
    """Event type enumeration for the controller event stream"""
    MODE_CHANGE = "mode_change"
    DECISION = "decision"
    TRADE_QUEUED = "trade_queued"
    TRADE_APPROVED = "trade_approved"
    TRADE_EXECUTED = "trade_executed"
    TRADE_FAILED = "trade_failed"
    CIRCUIT_BREAKER = "circuit_breaker"
    EMERGENCY_STOP = "emergency_stop"
    YIELD_UPDATE = "yield_update"
    PORTFOLIO_UPDATE = "portfolio_update"
    ALERT = "alert"


# ============================================================================
# Market Data Models
# ============================================================================

class YieldOpportunity(BaseModel):
    """Raw yield quote from a protocol or aggregator"""
    protocol: str
    asset: str
    apy: float = Field(ge=0)
    tvl: float = Field(ge=0)
    risk: RiskBucket = RiskBucket.MEDIUM
    yield_type: Optional[YieldType] = None
    chain: str = "solana"
    min_deposit: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


# ============================================================================
# Risk Models
# ============================================================================

class RiskFactors(BaseModel):
    """Individual risk factors, each 0-100"""
    smart_contract: int = Field(ge=0, le=100)
    liquidity: int = Field(ge=0, le=100)
    sustainability: int = Field(ge=0, le=100)
    counterparty: int = Field(ge=0, le=100)
    asset_volatility: int = Field(ge=0, le=100)


class RiskScore(BaseModel):
    """Composite risk score, higher is riskier"""
    overall: int = Field(ge=0, le=100)
    factors: RiskFactors
    confidence: float = Field(ge=0, le=1)
    warnings: List[str] = Field(default_factory=list)
    positives: List[str] = Field(default_factory=list)


class RiskAdjustedOpportunity(YieldOpportunity):
    """Yield opportunity enriched with risk analysis"""
    risk_score: RiskScore
    adjusted_apy: float = Field(ge=0)
    sharpe_ratio: float
    recommendation: Recommendation
    reasoning: List[str] = Field(default_factory=list)

    @property
    def key(self) -> tuple:
        return (self.protocol, self.asset)


# ============================================================================
# Portfolio Models
# ============================================================================

class Position(BaseModel):
    """A held position in a protocol"""
    protocol: str
    asset: str
    amount: float = Field(ge=0)
    value_usd: float = Field(ge=0)
    current_apy: float = Field(ge=0)
    entry_time: datetime


class Portfolio(BaseModel):
    """Portfolio snapshot"""
    positions: List[Position] = Field(default_factory=list)
    total_value: float = Field(default=0.0, ge=0)
    weighted_apy: float = Field(default=0.0, ge=0)
    # Undeployed wallet balance, not part of total_value
    cash_usd: float = Field(default=0.0, ge=0)

    @classmethod
    def from_positions(cls, positions: List[Position], cash_usd: float = 0.0) -> "Portfolio":
        """Build a portfolio deriving total value and value-weighted APY"""
        total_value = sum(p.value_usd for p in positions)
        if total_value > 0:
            weighted_apy = sum(p.current_apy * p.value_usd for p in positions) / total_value
        else:
            weighted_apy = 0.0
        return cls(positions=list(positions), total_value=total_value,
                   weighted_apy=weighted_apy, cash_usd=cash_usd)

    @classmethod
    def empty(cls) -> "Portfolio":
        return cls(positions=[], total_value=0.0, weighted_apy=0.0)

    def protocol_value(self, protocol: str) -> float:
        """Total USD value held in a single protocol"""
        return sum(p.value_usd for p in self.positions if p.protocol == protocol)

    def find_position(self, protocol: str, asset: str) -> Optional[Position]:
        for position in self.positions:
            if position.protocol == protocol and position.asset == asset:
                return position
        return None


# ============================================================================
# Decision Models
# ============================================================================

class ActionLeg(BaseModel):
    """One side of a rebalance action"""
    protocol: str
    asset: str
    amount: float = Field(default=0.0, ge=0)


class RebalanceAction(BaseModel):
    """A proposed capital movement"""
    type: ActionType
    from_: Optional[ActionLeg] = Field(default=None, alias="from")
    to: Optional[ActionLeg] = None
    expected_apy_gain: float = 0.0
    estimated_value_usd: float = Field(default=0.0, ge=0)

    class Config:
        populate_by_name = True

    def describe(self) -> str:
        source = f"{self.from_.asset}@{self.from_.protocol}" if self.from_ else "wallet"
        target = f"{self.to.asset}@{self.to.protocol}" if self.to else "wallet"
        return f"{self.type.value} {source} -> {target}"


class RiskAnalysis(BaseModel):
    """Risk delta of a decision"""
    current_risk_score: int = Field(ge=0, le=100)
    proposed_risk_score: int = Field(ge=0, le=100)
    risk_change: RiskChange = RiskChange.UNCHANGED


class OpportunitySummary(BaseModel):
    """Compact view of the best eligible opportunity"""
    protocol: str
    asset: str
    raw_apy: float
    adjusted_apy: float
    sharpe_ratio: float
    risk_score: int
    warnings: List[str] = Field(default_factory=list)
    positives: List[str] = Field(default_factory=list)


class Decision(BaseModel):
    """Decision with full context"""
    decision_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime
    type: DecisionType
    actions: List[RebalanceAction] = Field(default_factory=list)
    reasoning: List[str] = Field(default_factory=list)
    risk_analysis: RiskAnalysis
    confidence: float = Field(ge=0, le=1)
    projected_apy: float = 0.0
    projected_risk_adjusted_apy: float = 0.0
    top_opportunity: Optional[OpportunitySummary] = None

    @validator("actions")
    def hold_has_no_actions(cls, v, values):
        if values.get("type") == DecisionType.HOLD and v:
            raise ValueError("hold decisions carry no actions")
        return v

    @property
    def summary(self) -> str:
        return "\n".join(self.reasoning)


# ============================================================================
# Trading Models
# ============================================================================

class PendingTrade(BaseModel):
    """A trade moving through the approval and execution lifecycle"""
    id: str
    timestamp: datetime
    action: RebalanceAction
    decision_id: Optional[UUID] = None
    estimated_value_usd: float = Field(ge=0)
    status: TradeStatus = TradeStatus.PENDING
    requires_approval: bool
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    executed_at: Optional[datetime] = None
    tx_id: Optional[str] = None
    error: Optional[str] = None


class TradingState(BaseModel):
    """Controller state owned by a single TradingController"""
    mode: TradingMode
    is_active: bool = False
    is_paused: bool = False
    pause_reason: Optional[str] = None

    # Session stats
    trades_executed_today: int = 0
    total_volume_today: float = 0.0
    consecutive_losses: int = 0
    current_drawdown: float = 0.0
    peak_value: float = 0.0

    # Tracking
    last_decision_time: Optional[datetime] = None
    last_trade_time: Optional[datetime] = None
    pending_trades: List[PendingTrade] = Field(default_factory=list)

    # Snapshots
    portfolio: Optional[Portfolio] = None
    current_yields: List[RiskAdjustedOpportunity] = Field(default_factory=list)

    # Session
    session_id: str
    session_start_time: datetime
    session_day: Optional[str] = None


# ============================================================================
# Event Models
# ============================================================================

class TradingEvent(BaseModel):
    """Event emitted on every controller state transition"""
    event_id: UUID = Field(default_factory=uuid4)
    type: TradingEventType
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Export all types
# ============================================================================

__all__ = [
    # Enums
    "RiskBucket", "YieldType", "Recommendation", "ActionType", "DecisionType",
    "RiskChange", "TradingMode", "TradeStatus", "TradingEventType",

    # Market data
    "YieldOpportunity",

    # Risk
    "RiskFactors", "RiskScore", "RiskAdjustedOpportunity",

    # Portfolio
    "Position", "Portfolio",

    # Decisions
    "ActionLeg", "RebalanceAction", "RiskAnalysis", "OpportunitySummary", "Decision",

    # Trading
    "PendingTrade", "TradingState",

    # Events
    "TradingEvent",
]
