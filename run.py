from __future__ import annotations

"""Main entry point for the relay endpoint failover controller."""

import argparse
import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Awaitable, Callable, Optional

from core.config_loader import load_config
from core.config_models import FailoverSettings
from core.event_bus import EventBus
from core.failover import FailoverController
from core.health import EndpointRegistry
from core.scheduler import HealthScheduler
from listeners import SessionRebinder, StatusBoard
from storage.preference_store import PreferenceStore

LOGGER = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay endpoint health monitor and failover controller")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--once", action="store_true", help="Scan all endpoints once and pick the best")
    parser.add_argument("--loop", action="store_true", help="Start the long running health check loop")
    parser.add_argument("--switch", metavar="URL", help="Manually switch the active endpoint")
    parser.add_argument(
        "--add-endpoint",
        nargs=2,
        metavar=("NAME", "URL"),
        help="Add a custom relay endpoint to the pool",
    )
    parser.add_argument("--remove-endpoint", metavar="URL", help="Remove a custom relay endpoint")
    return parser.parse_args(argv)


def build_store(settings: FailoverSettings) -> PreferenceStore:
    return PreferenceStore(settings.prefs_path)


def build_registry(settings: FailoverSettings, store: PreferenceStore) -> EndpointRegistry:
    registry = EndpointRegistry(settings.candidates)
    for entry in store.custom_endpoints():
        registry.register(entry.to_endpoint())
    return registry


def build_controller(
    settings: FailoverSettings,
    store: Optional[PreferenceStore] = None,
    event_bus: Optional[EventBus] = None,
) -> FailoverController:
    store = store or build_store(settings)
    return FailoverController(
        registry=build_registry(settings, store),
        settings=settings,
        store=store,
        event_bus=event_bus or EventBus(),
    )


def _log_rebind(url: str) -> None:
    # stand-in for the transport layer; it reads the persisted preference on reconnect
    LOGGER.info("Transport should now relay through %s", url)


async def run_once(settings: FailoverSettings) -> None:
    controller = build_controller(settings)
    await controller.refresh_pool()
    print(json.dumps(controller.registry.snapshot(), ensure_ascii=False, indent=2))
    print(f"active: {controller.active} ({controller.active_state().value})")


async def switch_once(settings: FailoverSettings, url: str) -> None:
    controller = build_controller(settings)
    if await controller.manual_switch(url):
        print(f"active: {controller.active}")
    else:
        raise SystemExit(f"not switched (unchanged or invalid): {url}")


async def loop_forever(settings: FailoverSettings) -> None:
    event_bus = EventBus()
    controller = build_controller(settings, event_bus=event_bus)
    SessionRebinder(event_bus, _log_rebind, initial_endpoint=controller.active)
    StatusBoard(event_bus)
    scheduler = HealthScheduler(controller, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):  # pragma: no branch - OS dependent
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:  # pragma: no cover - Windows fallback
            signal.signal(sig, lambda _s, _f: loop.call_soon_threadsafe(scheduler.stop))

    LOGGER.info("Starting health checks, active endpoint %s", controller.active)
    await scheduler.run()


def run_async(entry: Callable[[], Awaitable[None]]) -> None:
    try:
        asyncio.run(entry())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")


def main(argv: Optional[list[str]] = None) -> None:
    configure_logging()
    args = parse_args(argv)
    if args.once and args.loop:
        raise SystemExit("--once and --loop cannot be combined")
    settings = load_config(config_path=args.config)

    if args.add_endpoint:
        name, url = args.add_endpoint
        try:
            build_store(settings).upsert_custom_endpoint(name, url)
        except ValueError as exc:
            raise SystemExit(str(exc)) from None
        LOGGER.info("Added custom endpoint %s (%s)", name, url)
    elif args.remove_endpoint:
        build_store(settings).delete_custom_endpoint(args.remove_endpoint)
        LOGGER.info("Removed custom endpoint %s", args.remove_endpoint)
    elif args.switch:
        run_async(lambda: switch_once(settings, args.switch))
    elif args.once:
        run_async(lambda: run_once(settings))
    elif args.loop:
        run_async(lambda: loop_forever(settings))
    else:
        raise SystemExit("Specify --once, --loop, --switch, --add-endpoint or --remove-endpoint")


if __name__ == "__main__":
    main()
