import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config_models import EndpointEntry, FailoverSettings
from core.event_bus import EventBus
from core.events import EventType
from core.failover import FailoverController, switch_reason
from core.health import Endpoint, EndpointRegistry, EndpointState
from core.health_checker import ProbeOutcome, ProbeResult
from core.scanner import scan_all
from storage.preference_store import PreferenceStore

A = "wss://a.example.com/wisp/"
B = "wss://b.example.com/wisp/"
C = "wss://c.example.com/wisp/"
KEY = "proxServer"


class _CountingStore(PreferenceStore):
    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.writes: List[tuple] = []

    def set(self, key, value) -> None:
        self.writes.append((key, value))
        super().set(key, value)


class _FakeProber:
    """Latency in ms per URL; None means a timeout, an exception is raised."""

    def __init__(self, script: Dict[str, object]) -> None:
        self.script = script
        self.calls: List[str] = []

    async def __call__(self, url: str, timeout_ms: float) -> ProbeResult:
        self.calls.append(url)
        latency = self.script.get(url)
        if isinstance(latency, Exception):
            raise latency
        if latency is None:
            return ProbeResult(url=url, outcome=ProbeOutcome.TIMEOUT, error="timeout")
        return ProbeResult(url=url, outcome=ProbeOutcome.SUCCESS, latency_ms=latency)


class _CountingScanner:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, registry, timeout_ms, prober, event_bus=None):
        self.calls += 1
        return await scan_all(registry, timeout_ms, prober=prober, event_bus=event_bus)


class _Harness:
    def __init__(
        self,
        tmp_path: Path,
        active: str = A,
        script: Optional[Dict[str, object]] = None,
        **overrides,
    ) -> None:
        self.settings = FailoverSettings(
            endpoints=[EndpointEntry(url=A), EndpointEntry(url=B), EndpointEntry(url=C)],
            **overrides,
        )
        self.registry = EndpointRegistry([Endpoint(A), Endpoint(B), Endpoint(C)])
        self.store = _CountingStore(tmp_path / "prefs.json")
        self.store.set(KEY, active)
        self.store.writes.clear()
        self.bus = EventBus()
        self.events: List = []
        self.bus.subscribe(EventType.ENDPOINT_SWITCHED.value, lambda env: self.events.append(env.event))
        self.faults: List = []
        self.bus.subscribe(EventType.SYSTEM_FAULT.value, lambda env: self.faults.append(env.event))
        self.prober = _FakeProber(script or {})
        self.scanner = _CountingScanner()
        self.controller = FailoverController(
            self.registry,
            self.settings,
            self.store,
            self.bus,
            prober=self.prober,
            scanner=self.scanner,
        )

    def switches(self) -> List[tuple]:
        return [(e.previous_endpoint, e.new_endpoint, e.reason) for e in self.events]


def test_unreachable_active_moves_to_fastest(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    h.registry.mark_failure(A)
    h.registry.mark_success(B, 50)
    h.registry.mark_success(C, 20)

    switched = asyncio.run(h.controller.evaluate_and_switch())

    assert switched is True
    assert h.controller.active == C
    assert h.store.get(KEY) == C
    assert h.switches() == [(A, C, "unreachable")]


def test_slow_active_moves_away(tmp_path: Path) -> None:
    h = _Harness(tmp_path, slow_threshold_ms=3000)
    h.registry.mark_success(A, 3500)
    h.registry.mark_success(B, 100)

    asyncio.run(h.controller.evaluate_and_switch())

    assert h.controller.active == B
    assert len(h.events) == 1
    assert "slow" in h.events[0].reason
    assert "3500" in h.events[0].reason


def test_healthy_active_is_kept(tmp_path: Path) -> None:
    h = _Harness(tmp_path, slow_threshold_ms=3000)
    h.registry.mark_success(A, 50)
    h.registry.mark_success(B, 5)

    switched = asyncio.run(h.controller.evaluate_and_switch())

    assert switched is False
    assert h.controller.active == A
    assert h.events == []
    assert h.store.writes == []


def test_all_down_holds_position(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    h = _Harness(tmp_path)
    for url in (A, B, C):
        h.registry.mark_failure(url)

    with caplog.at_level("WARNING"):
        switched = asyncio.run(h.controller.evaluate_and_switch())

    assert switched is False
    assert h.controller.active == A
    assert h.events == []
    assert "All endpoints appear down" in caplog.text
    assert [f.category for f in h.faults] == ["all_endpoints_down"]


def test_unknown_active_is_left_for_a_verified_peer(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    h.registry.mark_success(B, 70)

    asyncio.run(h.controller.evaluate_and_switch())

    assert h.switches() == [(A, B, "unreachable")]


def test_manual_switch_to_current_is_noop(tmp_path: Path) -> None:
    h = _Harness(tmp_path)

    assert asyncio.run(h.controller.manual_switch(A)) is False
    assert h.events == []
    assert h.store.writes == []


@pytest.mark.parametrize("url", ["", "ws://b.example.com/wisp/", "wss://b.example.com/nope/"])
def test_manual_switch_rejects_invalid(tmp_path: Path, url: str) -> None:
    h = _Harness(tmp_path)

    assert asyncio.run(h.controller.manual_switch(url)) is False
    assert h.controller.active == A
    assert h.events == []
    assert h.store.writes == []


def test_manual_switch_bypasses_health(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    h.registry.mark_success(A, 10)
    h.registry.mark_failure(B)

    assert asyncio.run(h.controller.manual_switch(B)) is True
    assert h.controller.active == B
    assert h.store.writes == [(KEY, B)]
    assert h.switches() == [(A, B, "manual")]


def test_manual_switch_adopts_unknown_endpoint(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    custom = "wss://localhost:8080/wisp/"

    assert asyncio.run(h.controller.manual_switch(custom)) is True
    assert custom in h.registry
    assert h.registry.endpoint(custom).name == "Custom Server"


def test_adopted_endpoint_released_after_switching_away(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    first = "wss://localhost:8080/wisp/"
    second = "wss://10.0.0.2:9000/wisp/"

    async def _run() -> None:
        await h.controller.manual_switch(first)
        await h.controller.manual_switch(second)
        await h.controller.manual_switch(A)

    asyncio.run(_run())

    assert first not in h.registry
    assert second not in h.registry
    assert [ep.url for ep in h.registry.endpoints] == [A, B, C]


def test_saved_custom_endpoint_survives_switching_away(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    custom = "wss://localhost:8080/wisp/"

    asyncio.run(h.controller.manual_switch(custom))
    h.store.upsert_custom_endpoint("Home", custom)
    asyncio.run(h.controller.manual_switch(B))

    assert custom in h.registry


def test_notification_delivered_before_switch_returns(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    observed = []
    h.bus.subscribe(
        EventType.ENDPOINT_SWITCHED.value,
        lambda env: observed.append((h.controller.active, h.store.get(KEY))),
    )

    asyncio.run(h.controller.manual_switch(C))

    assert observed == [(C, C)]


def test_failed_persist_keeps_selection(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    h = _Harness(tmp_path)

    def _broken_set(key, value):
        raise OSError("disk full")

    monkeypatch.setattr(h.store, "set", _broken_set)

    assert asyncio.run(h.controller.manual_switch(B)) is False
    assert h.controller.active == A
    assert h.events == []


def test_quick_check_escalates_at_fail_limit(tmp_path: Path) -> None:
    h = _Harness(tmp_path, script={A: None, B: 40, C: 60}, max_consecutive_fails=2)

    async def _run() -> None:
        await h.controller.quick_check_current()
        assert h.scanner.calls == 0
        assert h.registry.get(A).consecutive_failures == 1
        await h.controller.quick_check_current()

    asyncio.run(_run())

    assert h.scanner.calls == 1
    assert h.controller.active == B
    assert h.switches() == [(A, B, "unreachable")]


def test_quick_check_after_limit_reached_triggers_scan(tmp_path: Path) -> None:
    h = _Harness(tmp_path, script={A: None, B: 40}, max_consecutive_fails=3)
    for _ in range(3):
        h.registry.mark_failure(A)

    asyncio.run(h.controller.quick_check_current())

    assert h.scanner.calls == 1


def test_quick_check_success_resets_failures(tmp_path: Path) -> None:
    h = _Harness(tmp_path, script={A: 25})
    h.registry.mark_failure(A)

    asyncio.run(h.controller.quick_check_current())

    record = h.registry.get(A)
    assert record.consecutive_failures == 0
    assert record.latency_ms == 25
    assert h.scanner.calls == 0
    assert h.prober.calls == [A]
    assert h.controller.active_state() is EndpointState.HEALTHY


def test_quick_check_slow_escalates(tmp_path: Path) -> None:
    h = _Harness(tmp_path, script={A: 3200, B: 90, C: 30}, slow_threshold_ms=3000)

    asyncio.run(h.controller.quick_check_current())

    assert h.scanner.calls == 1
    assert h.controller.active == C
    assert h.events[0].reason.startswith("slow")


def test_quick_check_counts_raising_checker_as_failure(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    h = _Harness(tmp_path, script={A: RuntimeError("boom"), B: 40, C: 60}, max_consecutive_fails=1)

    with caplog.at_level("ERROR"):
        asyncio.run(h.controller.quick_check_current())

    record = h.registry.get(A)
    assert record.reachable is False
    assert record.failure_reason == "boom"
    assert h.scanner.calls == 1
    assert h.controller.active == B
    assert h.switches() == [(A, B, "unreachable")]
    assert "raised unexpectedly" in caplog.text


def test_initial_selection_from_store_or_default(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.json")
    settings = FailoverSettings(endpoints=[EndpointEntry(url=A), EndpointEntry(url=B)])
    registry = EndpointRegistry(settings.candidates)

    controller = FailoverController(registry, settings, store, EventBus())
    assert controller.active == A
    assert store.get(KEY) == A

    store.set(KEY, "javascript:alert(1)")
    controller = FailoverController(registry, settings, store, EventBus())
    assert controller.active == A
    assert store.get(KEY) == A

    store.set(KEY, "wss://10.0.0.2:9000/wisp/")
    controller = FailoverController(registry, settings, store, EventBus())
    assert controller.active == "wss://10.0.0.2:9000/wisp/"
    assert "wss://10.0.0.2:9000/wisp/" in registry


def test_unwritable_store_does_not_block_startup(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory", encoding="utf-8")
    store = PreferenceStore(blocker / "sub" / "prefs.json")
    settings = FailoverSettings(endpoints=[EndpointEntry(url=A), EndpointEntry(url=B)])

    with caplog.at_level("ERROR"):
        controller = FailoverController(EndpointRegistry(settings.candidates), settings, store, EventBus())

    assert controller.active == A
    assert "Could not persist endpoint" in caplog.text


def test_reconcile_follows_external_write(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    h.store.set(KEY, B)

    assert asyncio.run(h.controller.reconcile_preference()) is True
    assert h.controller.active == B
    assert h.switches() == [(A, B, "manual")]


def test_reconcile_restores_invalid_external_write(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    h.store.set(KEY, "http://evil.example.com/")

    assert asyncio.run(h.controller.reconcile_preference()) is False
    assert h.controller.active == A
    assert h.store.get(KEY) == A
    assert h.events == []


def test_switch_reason_labels() -> None:
    from core.health import HealthRecord

    assert switch_reason(None, 3000) == "unreachable"
    assert switch_reason(HealthRecord(reachable=False), 3000) == "unreachable"
    assert switch_reason(HealthRecord(reachable=True, latency_ms=4000.0), 3000) == "slow (4000 ms)"
    assert switch_reason(HealthRecord(reachable=True, latency_ms=10.0), 3000) == "better endpoint available"


def test_manual_switch_waits_for_running_evaluation(tmp_path: Path) -> None:
    h = _Harness(tmp_path)
    gate = asyncio.Event()
    order: List[str] = []

    async def _slow_prober(url: str, timeout_ms: float) -> ProbeResult:
        order.append(f"probe:{url}")
        await gate.wait()
        return ProbeResult(url=url, outcome=ProbeOutcome.TIMEOUT, error="timeout")

    h.controller._prober = _slow_prober

    async def _run() -> None:
        check = asyncio.create_task(h.controller.quick_check_current())
        await asyncio.sleep(0)
        switch = asyncio.create_task(h.controller.manual_switch(B))
        await asyncio.sleep(0.01)
        assert h.controller.active == A
        gate.set()
        await check
        order.append("checked")
        assert await switch is True

    asyncio.run(_run())

    assert order == [f"probe:{A}", "checked"]
    assert h.controller.active == B
