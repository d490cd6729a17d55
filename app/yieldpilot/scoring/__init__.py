"""
Risk Scoring Module

Turns raw yield quotes into risk-adjusted, comparable opportunities.
"""

from .protocol_profiles import PROTOCOL_PROFILES, UNKNOWN_PROFILE, ProtocolProfile, get_profile
from .risk_scorer import RISK_WEIGHTS, RiskScorer

__all__ = [
    "PROTOCOL_PROFILES",
    "UNKNOWN_PROFILE",
    "ProtocolProfile",
    "get_profile",
    "RISK_WEIGHTS",
    "RiskScorer",
]
