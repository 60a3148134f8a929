"""Best-endpoint selection over a registry snapshot."""

from __future__ import annotations

import math
from typing import Optional

from core.health import Endpoint, EndpointRegistry


def pick_best(registry: EndpointRegistry) -> Optional[Endpoint]:
    """Return the reachable endpoint with the lowest latency, or None.

    Only a strictly lower latency displaces the current pick, so on ties the
    endpoint registered first wins.
    """

    best: Optional[Endpoint] = None
    best_latency = math.inf
    for endpoint, record in registry.items():
        if record.reachable is True and record.latency_ms < best_latency:
            best = endpoint
            best_latency = record.latency_ms
    return best


__all__ = ["pick_best"]
