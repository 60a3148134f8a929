"""Configuration loader for the failover controller."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

from core.config_models import FailoverSettings

_INT_OVERRIDES: Dict[str, str] = {
    "RELAY_PROBE_TIMEOUT_MS": "probe_timeout_ms",
    "RELAY_CHECK_INTERVAL_MS": "check_interval_ms",
    "RELAY_FULL_SCAN_INTERVAL_MS": "full_scan_interval_ms",
    "RELAY_MAX_CONSECUTIVE_FAILS": "max_consecutive_fails",
    "RELAY_SLOW_THRESHOLD_MS": "slow_threshold_ms",
}
_STR_OVERRIDES: Dict[str, str] = {
    "RELAY_DEFAULT_ENDPOINT": "default_endpoint",
    "RELAY_PREFS_PATH": "prefs_path",
}


def _apply_env_overrides(data: Dict[str, object]) -> Dict[str, object]:
    merged = dict(data)
    for env_name, key in _INT_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw:
            try:
                merged[key] = int(raw)
            except ValueError:
                raise ValueError(f"{env_name} must be an integer, got {raw!r}") from None
    for env_name, key in _STR_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw:
            merged[key] = raw
    return merged


def load_config(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> FailoverSettings:
    """Load settings from YAML, then apply ``RELAY_*`` environment overrides.

    A missing ``config.yaml`` at the default location means "use defaults";
    an explicitly given path must exist.
    """

    base_path = Path(__file__).resolve().parents[1]
    explicit = config_path is not None
    if config_path is None:
        config_path = base_path / "config.yaml"
    if env_path is None:
        default_env = base_path / ".env"
        if default_env.exists():
            env_path = default_env

    load_dotenv(dotenv_path=env_path, override=False)

    data: Dict[str, object] = {}
    if explicit or config_path.exists():
        with open(config_path, "r", encoding="utf-8") as fp:
            loaded = yaml.safe_load(fp.read()) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{config_path} must contain a mapping at the top level")
        data = loaded

    return FailoverSettings.from_dict(_apply_env_overrides(data))


__all__ = ["load_config"]
