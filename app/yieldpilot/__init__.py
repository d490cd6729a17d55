"""
Yield Pilot Module

An autonomous yield allocation loop with:
- Risk scoring of yield opportunities
- Risk-adjusted allocation decisions
- Supervised trade execution with safety gates and circuit breakers
- Paper execution for simulation
"""

__version__ = "1.0.0"
__author__ = "Yield Pilot Team"

from .bus import EventBus

__all__ = [
    "EventBus",
]
