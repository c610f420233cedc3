from __future__ import annotations

"""
Координатор жизненного цикла инцидента.

Держит в согласованном состоянии три представления: запись в БД, сообщение
в Telegram-группе и подключённые дашборды. Распределённых транзакций нет:
при сбое посреди последовательности частичное состояние логируется и
остаётся как есть, откатов и повторов нет.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from incident_relay.domain.errors import (
    ChannelDeliveryError,
    NotFound,
    PersistenceError,
    ValidationError,
)
from incident_relay.domain.location import validate_location
from incident_relay.domain.models import (
    ActionEvent,
    ChannelMessageRef,
    Incident,
    NewIncident,
    Reporter,
)
from incident_relay.domain.transitions import INITIAL_STATUS, resolve_action
from incident_relay.messaging import formatting
from incident_relay.messaging.telegram_client import TelegramGateway
from incident_relay.realtime.fanout import FanoutHub
from incident_relay.storage.repository import AsyncIncidentStore

logger = logging.getLogger(__name__)


class KeyedLock:
    """asyncio.Lock на ключ; запись удаляется, когда ключ никто не держит и не ждёт."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class LifecycleCoordinator:
    def __init__(
        self,
        store: AsyncIncidentStore,
        gateway: TelegramGateway,
        hub: FanoutHub,
        group_chat_id: int | str,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._hub = hub
        self._group_chat_id = group_chat_id
        self._locks = KeyedLock()

    async def ingest_report(
        self,
        reporter: Reporter,
        latitude: float,
        longitude: float,
        reply_chat_id: int | str,
    ) -> Incident:
        try:
            location = validate_location(latitude, longitude)
        except ValidationError as exc:
            logger.warning("invalid location | reporter=%s error=%s", reporter.id, exc)
            await self._reply(reply_chat_id, formatting.ACK_INVALID_LOCATION)
            raise

        logger.info(
            "received location | reporter=%s (%s) lat=%s lon=%s",
            reporter.name, reporter.handle, location.latitude, location.longitude,
        )

        channel_ref: ChannelMessageRef | None = None
        try:
            await self._gateway.send_location(self._group_chat_id, location.latitude, location.longitude)
            channel_ref = await self._gateway.send_message(
                self._group_chat_id,
                formatting.build_report_text(reporter, location),
                reply_markup=formatting.build_action_keyboard(reporter.id),
            )
            incident = await self._store.create(
                NewIncident(reporter, location, INITIAL_STATUS, channel_ref)
            )
        except ChannelDeliveryError as exc:
            logger.error("report not delivered to group | reporter=%s error=%s", reporter.id, exc)
            await self._reply(reply_chat_id, formatting.ACK_INGEST_FAILED)
            raise
        except PersistenceError as exc:
            # Сообщение в группе уже есть, записи нет: известный разрыв, компенсации нет
            logger.error(
                "incident not persisted, group message orphaned | chat=%s message=%s error=%s",
                channel_ref.chat_id if channel_ref else None,
                channel_ref.message_id if channel_ref else None,
                exc,
            )
            await self._reply(reply_chat_id, formatting.ACK_INGEST_FAILED)
            raise

        logger.info("incident stored | id=%s message=%s", incident.id, incident.telegram_message_id)
        self._hub.incident_created(incident)
        await self._reply(reply_chat_id, formatting.ACK_FORWARDED)
        return incident

    async def resolve_action(self, event: ActionEvent) -> Incident:
        ref = event.channel_ref
        logger.info(
            "callback received | token=%s chat=%s message=%s actor=%s",
            event.token, ref.chat_id, ref.message_id, event.actor.id,
        )

        try:
            found = await self._store.find_by_channel_message(ref.chat_id, ref.message_id)
        except PersistenceError:
            await self._answer(event, formatting.ACK_UPDATE_FAILED)
            raise
        if found is None:
            logger.warning("no incident for message | chat=%s message=%s", ref.chat_id, ref.message_id)
            await self._answer(event, formatting.ACK_NOT_FOUND)
            raise NotFound(f"incident for message {ref.chat_id}/{ref.message_id}")

        try:
            transition = resolve_action(event.token)
        except ValidationError as exc:
            logger.warning("action rejected | incident=%s error=%s", found.id, exc)
            await self._answer(event, formatting.ACK_UNKNOWN_ACTION)
            raise

        async with self._locks.hold(found.id):
            try:
                current = await self._store.get(found.id)
            except PersistenceError:
                await self._answer(event, formatting.ACK_UPDATE_FAILED)
                raise
            if current is None:
                await self._answer(event, formatting.ACK_NOT_FOUND)
                raise NotFound(f"incident {found.id}")

            text = formatting.append_audit_line(event.message_text, transition.status, event.actor)
            try:
                await self._gateway.edit_message_text(
                    ref, text, reply_markup=None if transition.terminal else event.reply_markup
                )
            except ChannelDeliveryError as exc:
                logger.error("group message edit failed | incident=%s error=%s", current.id, exc)
                await self._answer(event, formatting.ACK_UPDATE_FAILED)
                raise

            try:
                updated = await self._store.update_status(current.id, transition.status)
            except PersistenceError as exc:
                logger.error(
                    "status edited in group but not persisted, views diverge | incident=%s status=%s error=%s",
                    current.id, transition.status, exc,
                )
                await self._answer(event, formatting.ACK_UPDATE_FAILED)
                raise
            if updated is None:
                logger.warning("incident removed during update | incident=%s", current.id)
                await self._answer(event, formatting.ACK_NOT_FOUND)
                raise NotFound(f"incident {current.id}")

        logger.info("incident %s status updated to: %s", updated.id, updated.status)
        self._hub.incident_updated(updated)
        await self._answer(event, formatting.status_ack(updated.status))
        return updated

    async def delete_incident(self, incident_id: str) -> None:
        async with self._locks.hold(incident_id):
            incident = await self._store.get(incident_id)
            if incident is None:
                raise NotFound(f"incident {incident_id}")
            if not await self._store.delete(incident_id):
                raise NotFound(f"incident {incident_id}")

        logger.info("incident %s deleted", incident_id)
        self._hub.incident_deleted(incident_id)

    async def list_incidents(self) -> list[Incident]:
        return await self._store.list_all()

    async def _reply(self, chat_id: int | str, text: str) -> None:
        try:
            await self._gateway.send_message(chat_id, text)
        except ChannelDeliveryError as exc:
            logger.warning("reporter reply failed | chat=%s error=%s", chat_id, exc)

    async def _answer(self, event: ActionEvent, text: str) -> None:
        try:
            await self._gateway.answer_callback_query(event.callback_id, text)
        except ChannelDeliveryError as exc:
            logger.warning("callback answer failed | callback=%s error=%s", event.callback_id, exc)
