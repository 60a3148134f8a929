"""Active relay endpoint ownership and automatic failover.

:class:`FailoverController` is the only owner of the active endpoint and the
only writer of its persisted preference. Every operation that may change the
selection runs under one :class:`asyncio.Lock`, so a manual switch can never
interleave with an automatic evaluation. The switch itself persists the new
value, updates the in-memory selection and announces the change on the event
bus before returning.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from threading import Lock
from typing import Awaitable, Callable, List, Optional, Set

from core.config_models import FailoverSettings
from core.event_bus import EventBus
from core.events import EndpointSwitchedEvent, EventEnvelope, EventType, Severity, SystemFaultEvent
from core.health import Endpoint, EndpointRegistry, EndpointState, HealthRecord, classify
from core.health_checker import ProbeResult, Prober, probe_endpoint, run_probe
from core.scanner import scan_all
from core.selector import pick_best
from core.validator import is_valid_endpoint
from storage.preference_store import PreferenceStore

LOGGER = logging.getLogger(__name__)

Scanner = Callable[..., Awaitable[List[ProbeResult]]]

REASON_UNREACHABLE = "unreachable"
REASON_BETTER = "better endpoint available"
REASON_MANUAL = "manual"
CUSTOM_ENDPOINT_NAME = "Custom Server"


def switch_reason(record: Optional[HealthRecord], slow_threshold_ms: float) -> str:
    """Why the current endpoint is being left, given its health record."""

    if record is None or not record.reachable:
        return REASON_UNREACHABLE
    if record.latency_ms >= slow_threshold_ms:
        return f"slow ({record.latency_ms:g} ms)"
    return REASON_BETTER


class FailoverController:
    """Keep the active relay endpoint pointed at a healthy server."""

    def __init__(
        self,
        registry: EndpointRegistry,
        settings: FailoverSettings,
        store: PreferenceStore,
        event_bus: EventBus,
        prober: Prober = probe_endpoint,
        scanner: Scanner = scan_all,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._store = store
        self._event_bus = event_bus
        self._prober = prober
        self._scanner = scanner
        self._op_lock = asyncio.Lock()
        self._selection_lock = Lock()
        self._adopted: Set[str] = set()
        self._active = self._initial_selection()
        self._adopt(self._active)

    @property
    def active(self) -> str:
        with self._selection_lock:
            return self._active

    @property
    def registry(self) -> EndpointRegistry:
        return self._registry

    def active_state(self) -> EndpointState:
        return classify(self._registry.get(self.active), self._settings.slow_threshold_ms)

    async def evaluate_and_switch(self) -> bool:
        """Switch away from the active endpoint if it is down or slow."""

        async with self._op_lock:
            return self._evaluate()

    async def quick_check_current(self) -> None:
        """Probe only the active endpoint, escalating to a full scan when needed."""

        async with self._op_lock:
            current = self.active
            self._adopt(current)
            result = await run_probe(self._prober, current, self._settings.probe_timeout_ms)
            if current not in self._registry:
                return
            record = self._registry.record(result)

            if result.ok:
                if record.latency_ms >= self._settings.slow_threshold_ms:
                    LOGGER.warning(
                        "Current endpoint slow (%g ms), looking for alternatives…", record.latency_ms
                    )
                    await self._scan()
                    self._evaluate()
                return

            limit = self._settings.max_consecutive_fails
            LOGGER.warning(
                "Current endpoint failed (%d/%d): %s",
                record.consecutive_failures,
                limit,
                record.failure_reason,
            )
            if record.consecutive_failures >= limit:
                LOGGER.warning("Max failures reached, probing all endpoints…")
                await self._scan()
                self._evaluate()

    async def manual_switch(self, url: str) -> bool:
        """Switch to ``url`` on explicit request, bypassing health checks."""

        async with self._op_lock:
            return self._manual(url)

    async def refresh_pool(self) -> List[ProbeResult]:
        """Full pool scan followed by an evaluation."""

        async with self._op_lock:
            results = await self._scan()
            self._evaluate()
            return results

    async def reconcile_preference(self) -> bool:
        """Follow a preference written by another process through the switch path."""

        async with self._op_lock:
            stored = self._store.get(self._settings.preference_key)
            current = self.active
            if stored == current:
                return False
            if not is_valid_endpoint(stored):
                LOGGER.warning("Persisted endpoint %r is invalid, restoring %s", stored, current)
                self._persist_quietly(current)
                return False
            LOGGER.info("Persisted endpoint changed externally to %s", stored)
            return self._manual(stored)

    def _initial_selection(self) -> str:
        key = self._settings.preference_key
        stored = self._store.get(key)
        if is_valid_endpoint(stored):
            return stored
        default = self._settings.default_endpoint
        if stored:
            LOGGER.warning("Persisted endpoint %r is invalid, falling back to %s", stored, default)
        self._persist_quietly(default)
        return default

    def _adopt(self, url: str) -> None:
        if url not in self._registry and is_valid_endpoint(url):
            self._registry.register(Endpoint(url=url, name=CUSTOM_ENDPOINT_NAME))
            self._adopted.add(url)

    def _release(self, url: str) -> None:
        """Drop an adopted endpoint once it is no longer active, unless it was saved."""

        if url not in self._adopted:
            return
        self._adopted.discard(url)
        saved = {entry.url for entry in self._store.custom_endpoints()}
        if url not in saved:
            self._registry.remove(url)
            LOGGER.debug("Released adopted endpoint %s", url)

    async def _scan(self) -> List[ProbeResult]:
        return await self._scanner(
            self._registry,
            self._settings.probe_timeout_ms,
            prober=self._prober,
            event_bus=self._event_bus,
        )

    def _evaluate(self) -> bool:
        current = self.active
        record = self._registry.get(current)
        if record is not None and record.reachable and record.latency_ms < self._settings.slow_threshold_ms:
            return False

        best = pick_best(self._registry)
        if best is None:
            LOGGER.warning("All endpoints appear down, keeping %s", current)
            self._emit_fault(current)
            return False
        if best.url == current:
            return False
        return self._switch(best.url, switch_reason(record, self._settings.slow_threshold_ms))

    def _manual(self, url: str) -> bool:
        if not url or url == self.active:
            LOGGER.info("Endpoint unchanged or empty, skipping update")
            return False
        if not is_valid_endpoint(url):
            LOGGER.warning("Invalid endpoint address, not switching: %r", url)
            return False
        self._adopt(url)
        return self._switch(url, REASON_MANUAL)

    def _switch(self, target: str, reason: str) -> bool:
        with self._selection_lock:
            previous = self._active
            if target == previous:
                return False
            if not is_valid_endpoint(target):
                LOGGER.warning("Candidate endpoint invalid, not switching: %r", target)
                return False
            try:
                self._persist(target)
            except OSError:
                LOGGER.exception("Could not persist endpoint %s, keeping %s", target, previous)
                return False
            self._active = target

        self._release(previous)
        LOGGER.info("Switched from %s → %s  (%s)", previous, target, reason)
        event = EndpointSwitchedEvent(
            event_type=EventType.ENDPOINT_SWITCHED,
            severity=Severity.INFO if reason == REASON_MANUAL else Severity.WARNING,
            source="failover",
            message=f"Switched relay endpoint ({reason})",
            previous_endpoint=previous,
            new_endpoint=target,
            reason=reason,
        )
        self._event_bus.publish(EventEnvelope(event=event, ts=time.time()))
        return True

    def _persist(self, url: str) -> None:
        self._store.set(self._settings.preference_key, url)

    def _persist_quietly(self, url: str) -> None:
        # the in-memory selection stays authoritative when the disk write fails
        try:
            self._persist(url)
        except OSError:
            LOGGER.exception("Could not persist endpoint %s", url)

    def _emit_fault(self, current: str) -> None:
        record = self._registry.get(current)
        latency = record.latency_ms if record is not None else math.inf
        event = SystemFaultEvent(
            event_type=EventType.SYSTEM_FAULT,
            severity=Severity.CRITICAL,
            source="failover",
            message="All endpoints appear down, keeping current endpoint",
            detail={"latency_ms": latency if math.isfinite(latency) else None},
            component="failover",
            endpoint=current,
            category="all_endpoints_down",
        )
        self._event_bus.publish(EventEnvelope(event=event, ts=time.time()))


__all__ = ["FailoverController", "REASON_BETTER", "REASON_MANUAL", "REASON_UNREACHABLE", "switch_reason"]
