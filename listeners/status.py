"""In-memory status view for a UI showing relay health and the last switch."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock
from typing import Dict, Optional

from core.event_bus import EventBus
from core.events import EndpointSwitchedEvent, EventEnvelope, EventType, HealthStatus, SystemFaultEvent


@dataclass(slots=True)
class SwitchRecord:
    previous_endpoint: str
    new_endpoint: str
    reason: str
    ts: float


@dataclass(slots=True)
class EndpointStatus:
    healthy: bool
    latency_ms: Optional[float]
    failures: int
    ts: float


class StatusBoard:
    """Collect switch, health and fault events for display."""

    def __init__(self, event_bus: EventBus) -> None:
        self._lock = Lock()
        self.last_switch: Optional[SwitchRecord] = None
        self.last_fault: Optional[str] = None
        self._health: Dict[str, EndpointStatus] = {}
        event_bus.subscribe(EventType.ENDPOINT_SWITCHED.value, self._on_switch)
        event_bus.subscribe(EventType.HEALTH_UPDATE.value, self._on_health)
        event_bus.subscribe(EventType.SYSTEM_FAULT.value, self._on_fault)

    @property
    def active_endpoint(self) -> Optional[str]:
        return self.last_switch.new_endpoint if self.last_switch else None

    def _on_switch(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        if isinstance(event, EndpointSwitchedEvent):
            with self._lock:
                self.last_switch = SwitchRecord(
                    previous_endpoint=event.previous_endpoint,
                    new_endpoint=event.new_endpoint,
                    reason=event.reason,
                    ts=envelope.ts,
                )
                self.last_fault = None

    def _on_health(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        if isinstance(event, HealthStatus):
            with self._lock:
                self._health[event.endpoint] = EndpointStatus(
                    healthy=event.healthy,
                    latency_ms=event.latency_ms,
                    failures=event.retries,
                    ts=envelope.ts,
                )

    def _on_fault(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        if isinstance(event, SystemFaultEvent):
            with self._lock:
                self.last_fault = event.message

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "active_endpoint": self.active_endpoint,
                "last_switch": asdict(self.last_switch) if self.last_switch else None,
                "last_fault": self.last_fault,
                "endpoints": {url: asdict(status) for url, status in self._health.items()},
            }
