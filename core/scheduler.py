"""Bootstrap pass plus periodic quick and full health checks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List

from core.config_models import FailoverSettings
from core.failover import FailoverController

LOGGER = logging.getLogger(__name__)


class HealthScheduler:
    """Drive a :class:`FailoverController` until stopped.

    Startup runs one full scan and evaluation. After that the active endpoint
    is quick-checked every ``check_interval_ms`` and, when
    ``full_scan_interval_ms`` is non-zero, the whole pool is rescanned on the
    slower interval. A failing tick is logged and retried on the next one.
    """

    def __init__(self, controller: FailoverController, settings: FailoverSettings) -> None:
        self._controller = controller
        self._settings = settings
        self._stop_event = asyncio.Event()

    async def bootstrap(self) -> bool:
        try:
            await self._controller.refresh_pool()
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Initial probe failed, keeping %s", self._controller.active)
            return False
        return True

    async def tick(self) -> None:
        await self._controller.reconcile_preference()
        await self._controller.quick_check_current()

    async def full_scan(self) -> None:
        await self._controller.refresh_pool()

    async def run(self) -> None:
        self._stop_event.clear()
        await self.bootstrap()
        tasks: List[asyncio.Task] = [
            asyncio.create_task(
                self._periodic("quick_check", self._settings.check_interval_ms, self.tick),
                name="quick_check",
            )
        ]
        if self._settings.full_scan_interval_ms > 0:
            tasks.append(
                asyncio.create_task(
                    self._periodic("full_scan", self._settings.full_scan_interval_ms, self.full_scan),
                    name="full_scan",
                )
            )
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    async def _periodic(self, name: str, interval_ms: int, coro: Callable[[], Awaitable[None]]) -> None:
        while not await self._sleep(interval_ms / 1000.0):
            try:
                await coro()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.exception("Task %s failed: %s", name, exc)

    async def _sleep(self, seconds: float) -> bool:
        """Wait for the next tick; True once stop() has been requested."""

        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


__all__ = ["HealthScheduler"]
