"""Syntactic rules for what counts as a Wisp relay endpoint address."""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

LOGGER = logging.getLogger(__name__)

RELAY_SCHEME = "wss"

_VALID_PATTERNS = (
    re.compile(r"wss://.+\.\w+/wisp/?"),
    re.compile(r"wss://[\d.]+:\d+/wisp/?"),
    re.compile(r"wss://localhost:\d+/wisp/?"),
)


def is_valid_endpoint(address: object) -> bool:
    """Return True when ``address`` is an acceptable relay endpoint.

    Only secure websocket URLs ending in the ``/wisp`` path are accepted:
    domain hosts, IPv4 hosts with an explicit port, or ``localhost`` with an
    explicit port. Whitespace anywhere in the address rejects it. Anything
    unparsable yields False instead of raising.
    """

    if not address or not isinstance(address, str):
        return False
    # urlsplit strips tabs and newlines, so check the raw text
    if any(ch.isspace() for ch in address):
        return False
    try:
        parts = urlsplit(address)
        # .port raises on out of range or non-numeric ports
        _ = parts.port
    except ValueError:
        LOGGER.warning("Invalid endpoint address format: %s", address)
        return False
    if parts.scheme != RELAY_SCHEME:
        return False
    return any(pattern.fullmatch(address) for pattern in _VALID_PATTERNS)


__all__ = ["RELAY_SCHEME", "is_valid_endpoint"]
