"""轻量级事件总线，用于把切换通知同步分发给协作方。"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, Iterable, List

from core.events import EventEnvelope

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[EventEnvelope], None]


class EventBus:
    """发布/订阅机制，publish 返回时所有订阅者都已执行完毕。"""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Subscriber) -> None:
        """注册特定事件类型的回调。"""

        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Subscriber) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, envelope: EventEnvelope) -> None:
        """将事件分发给对应类型的订阅者；单个订阅者出错不影响其余订阅者。"""

        event_type = envelope.event.event_type.value
        for handler in list(self._subscribers.get(event_type, [])):
            try:
                handler(envelope)
            except Exception:
                LOGGER.exception("Subscriber %r failed on %s event", handler, event_type)

    def subscribers(self, event_type: str) -> Iterable[Subscriber]:
        """便于测试/调试时查看订阅者。"""

        return tuple(self._subscribers.get(event_type, ()))
