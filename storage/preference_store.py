"""Durable key/value preferences for the failover controller.

Preferences live in a small JSON document, ``storage/preferences.json`` by
default (override with ``RELAY_PREFS_PATH``). The controller keeps the active
relay endpoint under a single key; user-added relay servers are kept under
``customEndpoints`` so a settings screen or the CLI can extend the pool
without touching the YAML config. Writes replace the file atomically so a
second process polling the same file never reads a half-written document.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

from core.config_models import EndpointEntry
from core.validator import is_valid_endpoint

LOGGER = logging.getLogger(__name__)

PREFS_PATH_ENV = "RELAY_PREFS_PATH"
CUSTOM_ENDPOINTS_KEY = "customEndpoints"
DEFAULT_PREFS_PATH = Path(__file__).resolve().parent / "preferences.json"


def default_prefs_path() -> Path:
    env_path = os.environ.get(PREFS_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_PREFS_PATH


class PreferenceStore:
    """JSON-file backed preference storage."""

    def __init__(self, path: Optional[Path | str] = None) -> None:
        self.path = Path(path) if path else default_prefs_path()
        self._lock = Lock()

    def load(self) -> Dict[str, Any]:
        """Read the whole document; a missing or corrupt file reads as empty."""

        with self._lock:
            return self._read()

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def custom_endpoints(self) -> List[EndpointEntry]:
        """User-added endpoints; entries that fail validation are skipped."""

        entries: List[EndpointEntry] = []
        for raw in self.get(CUSTOM_ENDPOINTS_KEY, []) or []:
            try:
                entry = EndpointEntry.from_dict(raw)
            except ValueError:
                LOGGER.warning("Ignoring malformed custom endpoint entry: %r", raw)
                continue
            if not is_valid_endpoint(entry.url):
                LOGGER.warning("Ignoring invalid custom endpoint: %s", entry.url)
                continue
            entries.append(entry)
        return entries

    def upsert_custom_endpoint(self, name: str, url: str) -> List[EndpointEntry]:
        """Insert or rename a custom endpoint keyed by URL."""

        if not is_valid_endpoint(url):
            raise ValueError(f"invalid endpoint address: {url}")
        remaining = [entry for entry in self.custom_endpoints() if entry.url != url]
        updated = remaining + [EndpointEntry(url=url, name=name)]
        self.set(CUSTOM_ENDPOINTS_KEY, [{"name": e.name, "url": e.url} for e in updated])
        return updated

    def delete_custom_endpoint(self, url: str) -> List[EndpointEntry]:
        updated = [entry for entry in self.custom_endpoints() if entry.url != url]
        self.set(CUSTOM_ENDPOINTS_KEY, [{"name": e.name, "url": e.url} for e in updated])
        return updated

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Could not read preferences from %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Preferences file %s does not hold an object, ignoring it", self.path)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)


__all__ = [
    "CUSTOM_ENDPOINTS_KEY",
    "PREFS_PATH_ENV",
    "PreferenceStore",
    "default_prefs_path",
]
