"""
Health check aggregation — deep check of the capture runtime.

Checks:
    • Media platform (provider, live device slots)
    • Geolocation provider
    • Place search (token configured)
    • Artifact memory held by live captures

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from backend.app.core.config import settings

if TYPE_CHECKING:
    from backend.app.runtime import AlertRuntime

logger = logging.getLogger(__name__)

# Above this, live artifacts are worth a look
ARTIFACT_MEMORY_WARN_MB = 256.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    alert_active: bool = False
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "alert_active": self.alert_active,
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


def check_media(runtime: "AlertRuntime") -> ComponentHealth:
    comp = ComponentHealth(name="media_platform")
    comp.message = f"Provider '{getattr(runtime.platform, 'name', 'custom')}'"
    comp.details = {"devices": runtime.streams.snapshot()}
    return comp


def check_geolocation(runtime: "AlertRuntime") -> ComponentHealth:
    comp = ComponentHealth(name="geolocation")
    provider = runtime.geolocation.provider.name
    comp.details = {"provider": provider, "in_flight": runtime.geolocation.in_flight}
    if provider == "disabled":
        comp.status = HealthStatus.DEGRADED
        comp.message = "Location services disabled; alerts will carry no position"
    else:
        comp.message = f"Provider '{provider}'"
    return comp


def check_place_search(runtime: "AlertRuntime") -> ComponentHealth:
    comp = ComponentHealth(name="place_search")
    token = getattr(runtime.place_client, "access_token", "configured")
    if not token:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No MAPBOX_ACCESS_TOKEN; safe places will be unavailable"
    else:
        comp.message = "Place search configured"
    comp.details = {"limit": runtime.finder.limit, "categories": [c.value for c in runtime.finder.categories]}
    return comp


def check_artifacts(runtime: "AlertRuntime") -> ComponentHealth:
    comp = ComponentHealth(name="artifacts")
    refs = runtime.artifacts.live_refs()
    total_mb = sum(runtime.artifacts.get(ref).size_bytes for ref in refs) / (1024 * 1024)
    comp.details = {"live": len(refs), "memory_mb": round(total_mb, 2)}
    if total_mb > ARTIFACT_MEMORY_WARN_MB:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{total_mb:.0f} MB held by live artifacts"
    return comp


async def run_health_check(runtime: "AlertRuntime") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
        alert_active=runtime.orchestrator.current is not None,
    )

    for check in (check_media, check_geolocation, check_place_search, check_artifacts):
        start = time.monotonic()
        try:
            comp = check(runtime)
        except Exception as e:
            logger.exception("Health check %s failed", check.__name__)
            comp = ComponentHealth(name=check.__name__.replace("check_", ""),
                                   status=HealthStatus.UNHEALTHY, message=str(e))
        comp.latency_ms = (time.monotonic() - start) * 1000
        report.components.append(comp)

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
