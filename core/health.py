"""Endpoint 池健康表：候选 relay 的身份与可变健康状态。"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace
from enum import Enum
from threading import Lock
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

if TYPE_CHECKING:  # pragma: no cover
    from core.health_checker import ProbeResult


@dataclass(frozen=True, slots=True)
class Endpoint:
    """单个候选 relay；url 为唯一键，身份不可变。"""

    url: str
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or urlsplit(self.url).hostname or self.url


@dataclass(slots=True)
class HealthRecord:
    """一个 endpoint 的健康记录。

    reachable 为 None 表示尚未探测；只有 reachable 为 True 时 latency_ms 才是有限值。
    """

    reachable: Optional[bool] = None
    latency_ms: float = math.inf
    consecutive_failures: int = 0
    last_checked_at: float = 0.0
    failure_reason: str = ""


class EndpointState(str, Enum):
    """活跃 endpoint 的状态机，完全由探测结果驱动。"""

    UNVERIFIED = "unverified"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"


def classify(record: Optional[HealthRecord], slow_threshold_ms: float) -> EndpointState:
    if record is None or record.reachable is None:
        return EndpointState.UNVERIFIED
    if not record.reachable:
        return EndpointState.UNREACHABLE
    if record.latency_ms >= slow_threshold_ms:
        return EndpointState.DEGRADED
    return EndpointState.HEALTHY


class EndpointRegistry:
    """按注册顺序保存 endpoint 与其健康记录。

    所有读写都在锁内完成，读取返回副本，扫描写入与选择器读取互不干扰。
    """

    def __init__(
        self,
        endpoints: Iterable[Endpoint] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._endpoints: Dict[str, Endpoint] = {}
        self._records: Dict[str, HealthRecord] = {}
        for endpoint in endpoints:
            self.register(endpoint)

    def register(self, endpoint: Endpoint) -> bool:
        """登记新 endpoint；已存在时保留原记录并返回 False。"""

        with self._lock:
            if endpoint.url in self._endpoints:
                return False
            self._endpoints[endpoint.url] = endpoint
            self._records[endpoint.url] = HealthRecord()
            return True

    def remove(self, url: str) -> bool:
        with self._lock:
            if url not in self._endpoints:
                return False
            del self._endpoints[url]
            del self._records[url]
            return True

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._endpoints

    def __len__(self) -> int:
        with self._lock:
            return len(self._endpoints)

    @property
    def endpoints(self) -> List[Endpoint]:
        with self._lock:
            return list(self._endpoints.values())

    def endpoint(self, url: str) -> Optional[Endpoint]:
        with self._lock:
            return self._endpoints.get(url)

    def get(self, url: str) -> Optional[HealthRecord]:
        """返回健康记录副本；未登记时返回 None。"""

        with self._lock:
            record = self._records.get(url)
            return replace(record) if record is not None else None

    def items(self) -> List[Tuple[Endpoint, HealthRecord]]:
        """注册顺序的 (endpoint, 记录副本) 列表，供选择器使用。"""

        with self._lock:
            return [(ep, replace(self._records[url])) for url, ep in self._endpoints.items()]

    def mark_success(self, url: str, latency_ms: float) -> HealthRecord:
        """标记成功：刷新延迟、清零失败次数。"""

        if not math.isfinite(latency_ms) or latency_ms < 0:
            raise ValueError(f"latency must be a finite non-negative number, got {latency_ms!r}")
        with self._lock:
            record = self._require(url)
            record.reachable = True
            record.latency_ms = float(latency_ms)
            record.consecutive_failures = 0
            record.last_checked_at = self._clock()
            record.failure_reason = ""
            return replace(record)

    def mark_failure(self, url: str, reason: str = "") -> HealthRecord:
        """标记失败：累计失败次数、延迟置为无穷大并记录原因。"""

        with self._lock:
            record = self._require(url)
            record.reachable = False
            record.latency_ms = math.inf
            record.consecutive_failures += 1
            record.last_checked_at = self._clock()
            record.failure_reason = reason
            return replace(record)

    def record(self, result: "ProbeResult") -> HealthRecord:
        """把一次探测结果写入对应 endpoint 的记录。"""

        if result.ok and result.latency_ms is not None:
            return self.mark_success(result.url, result.latency_ms)
        return self.mark_failure(result.url, result.error or result.outcome.value)

    def snapshot(self) -> List[Dict[str, object]]:
        """生成可序列化快照，用于日志与状态展示。"""

        return [
            {
                "name": ep.label,
                "url": ep.url,
                "reachable": record.reachable,
                "latency_ms": record.latency_ms if math.isfinite(record.latency_ms) else None,
                "failures": record.consecutive_failures,
                "last_checked": record.last_checked_at,
                "reason": record.failure_reason,
            }
            for ep, record in self.items()
        ]

    def _require(self, url: str) -> HealthRecord:
        try:
            return self._records[url]
        except KeyError:
            raise KeyError(f"endpoint not registered: {url}") from None


__all__ = ["Endpoint", "EndpointRegistry", "EndpointState", "HealthRecord", "classify"]
