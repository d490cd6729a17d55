"""
Adapters Module

Reference collaborators for the trading controller: yield sources,
portfolio sources, a paper executor and an audit store.
"""

from .audit_store import AuditRecord, InMemoryAuditStore
from .paper_executor import PaperExecutor
from .portfolio_source import StaticPortfolioSource
from .yield_source import ScoringYieldSource, StaticYieldFeed

__all__ = [
    "AuditRecord",
    "InMemoryAuditStore",
    "PaperExecutor",
    "StaticPortfolioSource",
    "ScoringYieldSource",
    "StaticYieldFeed",
]
