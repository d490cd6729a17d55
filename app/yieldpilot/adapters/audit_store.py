"""
In-memory decision audit trail.

Keeps every recorded decision with its context and query metadata.
Persistent storage is left to deployments; this store backs tests and
the paper runner.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from ..types import Decision, DecisionType, RiskChange


logger = logging.getLogger(__name__)


@dataclass
class AuditRecord:
    """A recorded decision with its context and query metadata."""
    decision: Decision
    context: Dict[str, Any]
    recorded_at: datetime
    protocols: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)

    @property
    def record_id(self) -> str:
        return str(self.decision.decision_id)


class InMemoryAuditStore:
    """Bounded in-memory audit store implementing the AuditStore protocol."""

    def __init__(self, max_records: int = 10000):
        self._records: Deque[AuditRecord] = deque(maxlen=max_records)

    def __len__(self) -> int:
        return len(self._records)

    async def record(self, decision: Decision, context: Dict[str, Any]) -> None:
        protocols: List[str] = []
        assets: List[str] = []
        for action in decision.actions:
            for leg in (action.from_, action.to):
                if leg is None:
                    continue
                if leg.protocol not in protocols:
                    protocols.append(leg.protocol)
                if leg.asset not in assets:
                    assets.append(leg.asset)

        self._records.append(AuditRecord(
            decision=decision,
            context=dict(context),
            recorded_at=decision.timestamp,
            protocols=protocols,
            assets=assets,
        ))
        logger.debug(f"Recorded decision {decision.decision_id} ({decision.type.value})")

    def get(self, record_id: str) -> Optional[AuditRecord]:
        for record in self._records:
            if record.record_id == record_id:
                return record
        return None

    def query(
        self,
        types: Optional[List[DecisionType]] = None,
        protocol: Optional[str] = None,
        min_confidence: Optional[float] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """Most recent records first, filtered."""
        results = []
        for record in reversed(self._records):
            if types and record.decision.type not in types:
                continue
            if protocol and protocol not in record.protocols:
                continue
            if min_confidence is not None and record.decision.confidence < min_confidence:
                continue
            if since is not None and record.recorded_at < since:
                continue
            results.append(record)
            if len(results) >= limit:
                break
        return results

    def stats(self) -> Dict[str, Any]:
        total = len(self._records)
        by_type: Dict[str, int] = {}
        by_protocol: Dict[str, int] = {}
        risk_changes = {change.value: 0 for change in RiskChange}
        confidence_sum = 0.0

        for record in self._records:
            decision = record.decision
            by_type[decision.type.value] = by_type.get(decision.type.value, 0) + 1
            for protocol in record.protocols:
                by_protocol[protocol] = by_protocol.get(protocol, 0) + 1
            risk_changes[decision.risk_analysis.risk_change.value] += 1
            confidence_sum += decision.confidence

        return {
            "total_decisions": total,
            "by_type": by_type,
            "by_protocol": by_protocol,
            "avg_confidence": confidence_sum / total if total else 0.0,
            "risk_changes": risk_changes,
            "first": self._records[0].recorded_at if total else None,
            "last": self._records[-1].recorded_at if total else None,
        }
