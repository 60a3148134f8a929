"""Concurrent probe pass across the whole endpoint pool."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from core.event_bus import EventBus
from core.events import EventEnvelope, EventType, HealthStatus, Severity
from core.health import EndpointRegistry, HealthRecord
from core.health_checker import ProbeResult, Prober, probe_endpoint, run_probe

LOGGER = logging.getLogger(__name__)


async def scan_all(
    registry: EndpointRegistry,
    timeout_ms: float,
    prober: Prober = probe_endpoint,
    event_bus: Optional[EventBus] = None,
) -> List[ProbeResult]:
    """Probe every registered endpoint concurrently and record the outcomes.

    All probes are awaited before anything is returned, so callers only see
    the registry once every record of this pass has settled. Failures are
    absorbed into the registry rather than raised.
    """

    endpoints = registry.endpoints
    LOGGER.info("Probing %d endpoints…", len(endpoints))
    raw = await asyncio.gather(*(run_probe(prober, ep.url, timeout_ms) for ep in endpoints))

    results: List[ProbeResult] = []
    for endpoint, outcome in zip(endpoints, raw):
        if endpoint.url not in registry:
            # removed while the scan was in flight
            continue
        record = registry.record(outcome)
        if outcome.ok:
            LOGGER.info("  ✔ %s  %.1f ms", endpoint.url, outcome.latency_ms)
        else:
            LOGGER.warning("  ✘ %s  (%s)", endpoint.url, outcome.error or outcome.outcome.value)
        _emit_health(event_bus, endpoint.url, record)
        results.append(outcome)

    alive = sum(1 for result in results if result.ok)
    LOGGER.info("Scan finished: %d/%d endpoints reachable", alive, len(results))
    return results


def _emit_health(event_bus: Optional[EventBus], url: str, record: HealthRecord) -> None:
    if event_bus is None:
        return
    healthy = bool(record.reachable)
    event = HealthStatus(
        event_type=EventType.HEALTH_UPDATE,
        severity=Severity.INFO if healthy else Severity.WARNING,
        source="scanner",
        message="Endpoint health update",
        endpoint=url,
        healthy=healthy,
        latency_ms=record.latency_ms if healthy else None,
        retries=record.consecutive_failures,
    )
    event_bus.publish(EventEnvelope(event=event, ts=time.time()))


__all__ = ["scan_all"]
