from __future__ import annotations

import asyncio
import logging
from typing import Any

from incident_relay.core.coordinator import LifecycleCoordinator
from incident_relay.domain.errors import ChannelDeliveryError, IncidentRelayError
from incident_relay.domain.models import ActionEvent, ChannelMessageRef, Reporter
from incident_relay.messaging.telegram_client import TelegramGateway

logger = logging.getLogger(__name__)


def _reporter(user: dict[str, Any]) -> Reporter:
    return Reporter(
        id=int(user.get("id", 0)),
        name=str(user.get("first_name") or ""),
        username=str(user.get("username") or ""),
    )


def parse_location_message(update: dict[str, Any]) -> tuple[Reporter, Any, Any, int] | None:
    """Локация из личного чата с ботом -> (reporter, lat, lon, chat_id)."""
    message = update.get("message") or {}
    location = message.get("location")
    chat = message.get("chat") or {}
    if not location or chat.get("type") != "private":
        return None
    return (
        _reporter(message.get("from") or {}),
        location.get("latitude"),
        location.get("longitude"),
        int(chat["id"]),
    )


def parse_callback(update: dict[str, Any]) -> ActionEvent | None:
    query = update.get("callback_query")
    if not query:
        return None
    message = query.get("message") or {}
    chat = message.get("chat") or {}
    if "message_id" not in message or "id" not in chat:
        return None
    return ActionEvent(
        callback_id=str(query.get("id", "")),
        channel_ref=ChannelMessageRef(int(chat["id"]), int(message["message_id"])),
        token=str(query.get("data") or ""),
        actor=_reporter(query.get("from") or {}),
        message_text=message.get("text") or message.get("caption") or "",
        reply_markup=message.get("reply_markup"),
    )


class TelegramUpdatePoller:
    """
    Long polling getUpdates. Каждый апдейт обрабатывается отдельной задачей,
    обработчики только переводят апдейт в вызов координатора.
    """

    def __init__(
        self,
        gateway: TelegramGateway,
        coordinator: LifecycleCoordinator,
        poll_timeout: int = 30,
        error_delay_seconds: float = 5.0,
    ) -> None:
        self._gateway = gateway
        self._coordinator = coordinator
        self._poll_timeout = poll_timeout
        self._error_delay = error_delay_seconds
        self._offset: int | None = None
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        logger.info("telegram poller started | timeout=%ss", self._poll_timeout)
        try:
            while True:
                await self.poll_once()
        finally:
            for task in list(self._tasks):
                task.cancel()
            await self.drain()
            logger.info("telegram poller stopped")

    async def poll_once(self) -> int:
        try:
            updates = await self._gateway.get_updates(self._offset, self._poll_timeout)
        except ChannelDeliveryError as exc:
            logger.error("polling error | status=%s details=%s", exc.status_code, exc.details)
            await asyncio.sleep(self._error_delay)
            return 0

        for update in updates:
            self._offset = int(update["update_id"]) + 1
            task = asyncio.create_task(self.dispatch(update))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(updates)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def dispatch(self, update: dict[str, Any]) -> None:
        try:
            location = parse_location_message(update)
            if location is not None:
                reporter, latitude, longitude, chat_id = location
                await self._coordinator.ingest_report(reporter, latitude, longitude, chat_id)
                return

            event = parse_callback(update)
            if event is not None:
                await self._coordinator.resolve_action(event)
                return

            logger.debug("ignored update | id=%s", update.get("update_id"))
        except IncidentRelayError as exc:
            # Пользователь уже получил ответ от координатора
            logger.info("update not applied | id=%s error=%s", update.get("update_id"), exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("update handler crashed | id=%s error=%s", update.get("update_id"), exc)
