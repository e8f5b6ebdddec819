"""
models.py — Shared data structures for an emergency alert.

Defines:
    • AlertStatus      — lifecycle of one alert
    • LocationStatus   — progress of the one-shot position request
    • AlertNotice      — user-facing message (replaces toasts)
    • EmergencyContact — helpline shown beside an active alert
    • AlertSession     — the explicit context object for one alert

═══════════════════════════════════════════════════════════════════════════
ALERT SESSION OWNERSHIP
═══════════════════════════════════════════════════════════════════════════

An AlertSession references the video and audio MediaSessions, at most
one Position and the current SafePlace set. It owns no device handle:
hardware belongs to the recorders through the MediaStreamManager.

    trigger() ──▶ ACTIVE ──end()──▶ ENDED

The orchestrator holds exactly one current session (or none) and passes
it explicitly; late results are matched against it by alert_id.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from backend.app.capture.models import MediaKind, MediaSession, utc_now
from backend.app.location.models import (
    Position,
    SafePlace,
    SafePlaceCategory,
    SearchStatus,
)
from backend.app.spatial.radius_utils import nearest_first


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertStatus(str, Enum):
    ACTIVE = "active"
    ENDED  = "ended"


class LocationStatus(str, Enum):
    PENDING     = "pending"       # request in flight
    ACQUIRED    = "acquired"
    UNAVAILABLE = "unavailable"   # denied, failed or timed out
    DISCARDED   = "discarded"     # alert ended


class NoticeLevel(str, Enum):
    INFO    = "info"
    WARNING = "warning"
    ERROR   = "error"


# ═══════════════════════════════════════════════════════════════════════════
# Emergency contacts
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EmergencyContact:
    name: str
    number: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "number": self.number, "description": self.description}


EMERGENCY_CONTACTS: Tuple[EmergencyContact, ...] = (
    EmergencyContact("National Emergency", "112", "All emergencies"),
    EmergencyContact("Women Helpline", "1091", "Women in distress"),
    EmergencyContact("Police", "100", "Police control room"),
    EmergencyContact("Ambulance", "102", "Medical emergencies"),
    EmergencyContact("Domestic Violence", "181", "Domestic abuse helpline"),
    EmergencyContact("Cyber Crime", "1930", "Online harassment and fraud"),
)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


@dataclass
class AlertNotice:
    """One message for the user, e.g. 'Location shared: 12.9716, 77.5946'."""
    code: str
    message: str
    level: NoticeLevel = NoticeLevel.INFO
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "level": self.level.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class AlertSession:
    """
    Context for one triggered alert.

    Attributes
    ----------
    media : dict[MediaKind, MediaSession]
        The recorder sessions started by this alert.
    position : Position | None
        At most one fix per alert; replaced only by a refresh.
    places : frozenset[SafePlace]
        Current safe-place set, deduplicated by id.
    places_status : SearchStatus
        Distinguishes "nothing nearby" (EMPTY) from a failed search
        (UNAVAILABLE).
    location_task : asyncio.Task | None
        Position request and follow-up search; cancelled by end().
    """
    alert_id: str = field(default_factory=_generate_id)
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    media: Dict[MediaKind, MediaSession] = field(default_factory=dict)
    position: Optional[Position] = None
    location_status: LocationStatus = LocationStatus.PENDING
    places: FrozenSet[SafePlace] = frozenset()
    places_status: SearchStatus = SearchStatus.NOT_STARTED
    failed_categories: Tuple[SafePlaceCategory, ...] = ()
    notices: List[AlertNotice] = field(default_factory=list)
    location_task: Optional["asyncio.Task"] = field(default=None, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.status is AlertStatus.ACTIVE

    def add_notice(self, code: str, message: str, level: NoticeLevel = NoticeLevel.INFO) -> AlertNotice:
        notice = AlertNotice(code=code, message=message, level=level)
        self.notices.append(notice)
        return notice

    def discard_location(self) -> None:
        self.position = None
        self.places = frozenset()
        if self.location_status is not LocationStatus.UNAVAILABLE:
            self.location_status = LocationStatus.DISCARDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status.value,
            "active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "media": {kind.value: session.to_dict() for kind, session in self.media.items()},
            "position": self.position.to_dict() if self.position else None,
            "location_status": self.location_status.value,
            "places_status": self.places_status.value,
            "failed_categories": [c.value for c in self.failed_categories],
            "places": [p.to_dict() for p in nearest_first(self.places, lambda p: p.distance_m)],
            "notices": [n.to_dict() for n in self.notices],
        }
