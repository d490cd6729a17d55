"""
Decision Engine Module

Turns ranked opportunities and current holdings into allocation decisions.
"""

from .decision_engine import DecisionEngine, NO_ELIGIBLE_REASON

__all__ = ["DecisionEngine", "NO_ELIGIBLE_REASON"]
