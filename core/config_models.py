"""Failover 控制器的配置模型：endpoint 列表与各项调优参数。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.health import Endpoint
from core.validator import is_valid_endpoint


@dataclass(slots=True)
class EndpointEntry:
    """配置文件中的 endpoint 条目。"""

    url: str
    name: str = ""

    def to_endpoint(self) -> Endpoint:
        return Endpoint(url=self.url, name=self.name)

    @classmethod
    def from_dict(cls, data: object) -> "EndpointEntry":
        if isinstance(data, str):
            return cls(url=data)
        if isinstance(data, dict):
            return cls(url=str(data.get("url", "")), name=str(data.get("name") or ""))
        raise ValueError(f"unsupported endpoint entry: {data!r}")


def _well_known_endpoints() -> List[EndpointEntry]:
    return [
        EndpointEntry(url="wss://dash.goip.de/wisp/", name="DaydreamX's Wisp"),
        EndpointEntry(url="wss://wisp.rhw.one/wisp/", name="Rhw's Wisp"),
        EndpointEntry(url="wss://wisp.mercurywork.shop/wisp/", name="Mercury Workshop Wisp"),
        EndpointEntry(url="wss://wisp.tomp.app/wisp/", name="TOMP Wisp"),
        EndpointEntry(url="wss://wisp2.rhw.one/wisp/", name="Rhw's Wisp 2"),
    ]


@dataclass(slots=True)
class FailoverSettings:
    """健康检查与自动切换的全部常量。"""

    endpoints: List[EndpointEntry] = field(default_factory=_well_known_endpoints)
    default_endpoint: Optional[str] = None
    probe_timeout_ms: int = 4000
    check_interval_ms: int = 30000
    full_scan_interval_ms: int = 300000
    max_consecutive_fails: int = 2
    slow_threshold_ms: int = 3000
    preference_key: str = "proxServer"
    prefs_path: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.endpoints:
            raise ValueError("at least one endpoint must be configured")
        invalid = [entry.url for entry in self.endpoints if not is_valid_endpoint(entry.url)]
        if invalid:
            raise ValueError(f"invalid endpoint addresses: {', '.join(invalid)}")
        if self.default_endpoint is None:
            self.default_endpoint = self.endpoints[0].url
        elif not is_valid_endpoint(self.default_endpoint):
            raise ValueError(f"invalid default endpoint: {self.default_endpoint}")
        for name in ("probe_timeout_ms", "check_interval_ms", "slow_threshold_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.full_scan_interval_ms < 0:
            raise ValueError("full_scan_interval_ms must be >= 0 (0 disables the full scan loop)")
        if self.max_consecutive_fails < 1:
            raise ValueError("max_consecutive_fails must be at least 1")
        if not self.preference_key:
            raise ValueError("preference_key must not be empty")

    @property
    def candidates(self) -> List[Endpoint]:
        return [entry.to_endpoint() for entry in self.endpoints]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "FailoverSettings":
        if not data:
            return cls()
        payload = dict(data)
        if "endpoints" in payload:
            payload["endpoints"] = [EndpointEntry.from_dict(item) for item in payload["endpoints"] or []]
        return cls(**payload)
