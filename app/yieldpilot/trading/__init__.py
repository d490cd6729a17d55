"""
Trading Module

Supervised execution of allocation decisions with safety gates and
circuit breakers.
"""

from .controller import ControlResult, TradingController
from .safety import GateResult, GateVerdict, check_execution_gate, compute_drawdown, verify_autonomous_readiness

__all__ = [
    "ControlResult",
    "TradingController",
    "GateResult",
    "GateVerdict",
    "check_execution_gate",
    "compute_drawdown",
    "verify_autonomous_readiness",
]
