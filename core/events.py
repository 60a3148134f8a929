"""事件定义：endpoint 切换、健康遥测与系统故障的统一结构体。

事件层保持传输无关性，控制器、会话层与 UI 通过共享的类型而非零散的字典通信。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class EventType(str, Enum):
    """事件的顶层分类。"""

    ENDPOINT_SWITCHED = "endpoint_switched"
    HEALTH_UPDATE = "health_update"
    SYSTEM_FAULT = "system_fault"


class Severity(str, Enum):
    """事件严重程度。"""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True)
class EventBase:
    """所有事件共享的公共字段。"""

    event_type: EventType
    severity: Severity
    source: str
    message: str
    detail: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EndpointSwitchedEvent(EventBase):
    """活跃 endpoint 已切换：旧值、新值与原因。"""

    previous_endpoint: str = ""
    new_endpoint: str = ""
    reason: str = ""


@dataclass(slots=True)
class SystemFaultEvent(EventBase):
    """系统故障事件，例如全部 endpoint 不可达。"""

    component: str = ""
    endpoint: Optional[str] = None
    category: str = ""  # e.g. all_endpoints_down, persistence


@dataclass(slots=True)
class HealthStatus(EventBase):
    """健康度遥测事件，面向 UI/日志展示。"""

    endpoint: str = ""
    healthy: bool = True
    latency_ms: Optional[float] = None
    retries: int = 0


@dataclass(slots=True)
class EventEnvelope:
    """事件包裹体，便于在事件总线上传递时间戳与唯一标识。"""

    event: EventBase
    ts: float
    id: Optional[str] = None
