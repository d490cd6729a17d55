"""
Protocol risk profiles.

Static security and governance facts for the protocols the scorer knows
about. Anything else falls back to UNKNOWN_PROFILE, which is deliberately
conservative.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class ProtocolProfile:
    """Security profile of a yield protocol"""
    name: str
    audited: bool
    launch_date: date
    centralization_risk: str  # low, medium, high
    base_risk_score: int
    audit_firms: Tuple[str, ...] = field(default_factory=tuple)
    historical_incidents: int = 0
    last_incident_date: Optional[date] = None
    insurance_fund: bool = False
    is_unknown: bool = False


UNKNOWN_PROFILE = ProtocolProfile(
    name="Unknown Protocol",
    audited=False,
    launch_date=date(2024, 1, 1),
    centralization_risk="high",
    base_risk_score=70,
    is_unknown=True,
)


PROTOCOL_PROFILES: Dict[str, ProtocolProfile] = {
    "kamino": ProtocolProfile(
        name="Kamino Finance",
        audited=True,
        audit_firms=("OtterSec", "Halborn"),
        launch_date=date(2022, 6, 1),
        centralization_risk="low",
        insurance_fund=True,
        base_risk_score=25,
    ),
    "drift": ProtocolProfile(
        name="Drift Protocol",
        audited=True,
        audit_firms=("OtterSec", "Trail of Bits"),
        launch_date=date(2021, 11, 1),
        historical_incidents=1,
        last_incident_date=date(2022, 11, 1),
        centralization_risk="low",
        insurance_fund=True,
        base_risk_score=30,
    ),
    "jito": ProtocolProfile(
        name="Jito",
        audited=True,
        audit_firms=("Neodyme", "OtterSec"),
        launch_date=date(2022, 11, 1),
        centralization_risk="medium",  # MEV extraction
        insurance_fund=False,
        base_risk_score=20,
    ),
    "marinade": ProtocolProfile(
        name="Marinade Finance",
        audited=True,
        audit_firms=("Neodyme", "Kudelski"),
        launch_date=date(2021, 7, 1),
        centralization_risk="low",
        insurance_fund=False,
        base_risk_score=15,
    ),
    "mango": ProtocolProfile(
        name="Mango Markets",
        audited=True,
        audit_firms=("OtterSec",),
        launch_date=date(2021, 8, 1),
        historical_incidents=1,
        last_incident_date=date(2022, 10, 1),
        centralization_risk="low",
        insurance_fund=True,
        base_risk_score=45,
    ),
}


def get_profile(protocol: str, profiles: Optional[Dict[str, ProtocolProfile]] = None) -> ProtocolProfile:
    """Profile for a protocol, UNKNOWN_PROFILE when not listed."""
    table = PROTOCOL_PROFILES if profiles is None else profiles
    return table.get(protocol.lower(), UNKNOWN_PROFILE)
