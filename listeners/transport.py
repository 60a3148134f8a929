"""Re-bind the live relay session whenever the active endpoint changes."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from core.event_bus import EventBus
from core.events import EndpointSwitchedEvent, EventEnvelope, EventType

LOGGER = logging.getLogger(__name__)

Rebind = Callable[[str], None]


class SessionRebinder:
    """Subscribe to switch events and hand the new endpoint to the transport."""

    def __init__(self, event_bus: EventBus, rebind: Rebind, initial_endpoint: Optional[str] = None) -> None:
        self._rebind = rebind
        self.bound_endpoint = initial_endpoint
        self.history: List[str] = []
        event_bus.subscribe(EventType.ENDPOINT_SWITCHED.value, self._on_switch)

    def _on_switch(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        if not isinstance(event, EndpointSwitchedEvent):
            LOGGER.debug("Skip non-switch event: %s", event)
            return
        LOGGER.info("Re-binding relay session to %s (%s)", event.new_endpoint, event.reason)
        self._rebind(event.new_endpoint)
        self.bound_endpoint = event.new_endpoint
        self.history.append(event.new_endpoint)


__all__ = ["Rebind", "SessionRebinder"]
