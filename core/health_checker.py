"""Single-endpoint reachability and latency probe.

A probe opens a websocket handshake against a relay endpoint and measures
the time until the connection is open. The handshake races a timer inside
:func:`asyncio.wait_for`; whichever finishes first produces the one
:class:`ProbeResult` for the call. On timeout the pending connect task is
cancelled so no half-open socket is left behind.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

from core.validator import is_valid_endpoint

LOGGER = logging.getLogger(__name__)

Connect = Callable[..., Awaitable[Any]]
Prober = Callable[[str, float], Awaitable["ProbeResult"]]


class ProbeOutcome(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    INVALID = "invalid"


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of one probe. ``latency_ms`` is only set on success."""

    url: str
    outcome: ProbeOutcome
    latency_ms: Optional[float] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is ProbeOutcome.SUCCESS


async def probe_endpoint(
    url: str,
    timeout_ms: float,
    connect: Connect = websockets.connect,
    clock: Callable[[], float] = time.perf_counter,
) -> ProbeResult:
    """Measure handshake latency for ``url`` bounded by ``timeout_ms``.

    Never raises for network trouble: timeouts and transport errors are
    reported through the returned :class:`ProbeResult`.
    """

    if not is_valid_endpoint(url):
        return ProbeResult(url=url, outcome=ProbeOutcome.INVALID, error="invalid endpoint address")

    timeout_s = timeout_ms / 1000.0

    async def _open() -> Any:
        # our own timer is the only bound on the handshake
        return await connect(url, open_timeout=None, close_timeout=timeout_s)

    started = clock()
    try:
        ws = await asyncio.wait_for(_open(), timeout=timeout_s)
    except asyncio.TimeoutError:
        return ProbeResult(url=url, outcome=ProbeOutcome.TIMEOUT, error="timeout")
    except (OSError, WebSocketException) as exc:
        return ProbeResult(
            url=url,
            outcome=ProbeOutcome.CONNECTION_ERROR,
            error=str(exc) or type(exc).__name__,
        )

    latency_ms = round(max(clock() - started, 0.0) * 1000, 1)
    try:
        await ws.close()
    except (OSError, WebSocketException) as exc:
        LOGGER.debug("Error closing probe connection to %s: %s", url, exc)
    return ProbeResult(url=url, outcome=ProbeOutcome.SUCCESS, latency_ms=latency_ms)


async def run_probe(prober: Prober, url: str, timeout_ms: float) -> ProbeResult:
    """Call ``prober`` and turn anything it raises into a connection failure."""

    try:
        return await prober(url, timeout_ms)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        LOGGER.error("Probe of %s raised unexpectedly", url, exc_info=exc)
        return ProbeResult(
            url=url,
            outcome=ProbeOutcome.CONNECTION_ERROR,
            error=str(exc) or type(exc).__name__,
        )


__all__ = ["Connect", "ProbeOutcome", "ProbeResult", "Prober", "probe_endpoint", "run_probe"]
