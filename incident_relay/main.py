from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
from typing import Any

import uvicorn

from incident_relay.api.app import create_app
from incident_relay.client.reconcile import LocalView, PollingReconciler, PushListener
from incident_relay.config import Settings, load_dotenv
from incident_relay.core.coordinator import LifecycleCoordinator
from incident_relay.domain.errors import ChannelDeliveryError, PersistenceError
from incident_relay.messaging.poller import TelegramUpdatePoller
from incident_relay.messaging.telegram_client import TelegramGateway
from incident_relay.observability.logging import setup_logging
from incident_relay.realtime.fanout import FanoutHub
from incident_relay.storage.repository import AsyncIncidentStore, IncidentRepository

logger = logging.getLogger("incident_relay")


def build_components(settings: Settings, repository: IncidentRepository) -> dict[str, Any]:
    store = AsyncIncidentStore(repository)
    gateway = TelegramGateway(settings.telegram_bot_token, timeout=settings.io_timeout_seconds)
    hub = FanoutHub(store)
    coordinator = LifecycleCoordinator(store, gateway, hub, settings.telegram_group_id)
    poller = TelegramUpdatePoller(
        gateway,
        coordinator,
        poll_timeout=settings.telegram_poll_timeout_seconds,
    )
    app = create_app(coordinator, hub, static_dir=settings.static_dir)
    return {
        "store": store,
        "gateway": gateway,
        "hub": hub,
        "coordinator": coordinator,
        "poller": poller,
        "app": app,
    }


async def serve(settings: Settings, repository: IncidentRepository) -> None:
    components = build_components(settings, repository)
    config = uvicorn.Config(
        components["app"],
        host=settings.web_server_host,
        port=settings.web_server_port,
        log_config=None,
    )
    server = uvicorn.Server(config)

    poll_task = asyncio.create_task(components["poller"].run(), name="telegram-poller")
    logger.info("web server listening on port %s", settings.web_server_port)
    logger.info("telegram bot started. Send your location to it privately.")
    try:
        await server.serve()
    finally:
        poll_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await poll_task
        await components["hub"].close()
        logger.info("server stopped")


async def send_test_message(settings: Settings) -> None:
    gateway = TelegramGateway(settings.telegram_bot_token, timeout=settings.io_timeout_seconds)
    await gateway.send_message(
        settings.telegram_group_id,
        "✅ Test message from incident relay\n\nTelegram integration is configured correctly.",
    )
    logger.info("test message sent to %s", settings.telegram_group_id)


def _ws_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        return "wss://" + base.removeprefix("https://") + "/ws"
    return "ws://" + base.removeprefix("http://") + "/ws"


async def run_viewer(base_url: str, settings: Settings) -> None:
    def _log_change(event: str, data: Any) -> None:
        logger.info("view changed | event=%s data=%s", event, data)

    view = LocalView(on_change=_log_change)
    reconciler = PollingReconciler(
        base_url,
        view,
        interval_seconds=settings.reconcile_interval_seconds,
        timeout=settings.io_timeout_seconds,
    )
    listener = PushListener(_ws_url(base_url), view)
    await asyncio.gather(reconciler.run(), listener.run())


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Telegram incident reports -> shared log + realtime dashboard")
    parser.add_argument(
        "--test-telegram",
        action="store_true",
        help="send one test message to the Telegram group and exit",
    )
    parser.add_argument(
        "--viewer",
        metavar="URL",
        help="run the reconciling dashboard client against a running server (e.g. http://localhost:3000)",
    )
    return parser.parse_args()


def main() -> None:
    load_dotenv()
    args = parse_args()
    settings = Settings.from_env()

    setup_logging(level=settings.log_level, json_logs=settings.json_logs)

    if args.viewer:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(run_viewer(args.viewer, settings))
        return

    missing = settings.missing_required()
    if missing:
        logger.error("essential settings not set: %s", ", ".join(missing))
        raise SystemExit(1)

    if args.test_telegram:
        try:
            asyncio.run(send_test_message(settings))
        except ChannelDeliveryError as exc:
            logger.error("test message failed | error=%s", exc)
            raise SystemExit(1) from exc
        return

    # Без хранилища процесс не стартует
    try:
        repository = IncidentRepository(settings.database_url, timeout=settings.io_timeout_seconds)
    except PersistenceError as exc:
        logger.critical("failed to connect to database | error=%s", exc)
        raise SystemExit(1) from exc
    logger.info("connected to database")

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve(settings, repository))


if __name__ == "__main__":
    main()
