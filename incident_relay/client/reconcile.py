from __future__ import annotations

"""
Клиент дашборда: локальное представление инцидентов.

Push-события (WebSocket) и периодический опрос GET /incidents применяются
через одну и ту же логику слияния, поэтому повторная доставка безвредна,
а пропущенные push-события догоняются опросом.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import aiohttp
import httpx

from incident_relay.realtime.fanout import EVENT_DELETED, EVENT_INITIAL, EVENT_NEW, EVENT_UPDATED

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, Any], None]


@dataclass
class ReconcileResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.updated)

    def summary(self) -> str:
        return f"added={len(self.added)} | removed={len(self.removed)} | updated={len(self.updated)}"


class LocalView:
    def __init__(self, on_change: ChangeCallback | None = None) -> None:
        self._incidents: dict[str, dict[str, Any]] = {}
        self._on_change = on_change

    def __contains__(self, incident_id: str) -> bool:
        return incident_id in self._incidents

    def __len__(self) -> int:
        return len(self._incidents)

    def ids(self) -> set[str]:
        return set(self._incidents)

    def get(self, incident_id: str) -> dict[str, Any] | None:
        return self._incidents.get(incident_id)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return dict(self._incidents)

    def apply(self, event: str, data: Any) -> bool:
        """Применяет событие; возвращает True если представление изменилось."""
        if event == EVENT_INITIAL:
            incoming = {str(i["id"]): i for i in data or []}
            changed = incoming != self._incidents
            self._incidents = incoming
        elif event == EVENT_NEW:
            incident_id = str(data["id"])
            changed = incident_id not in self._incidents
            if changed:
                self._incidents[incident_id] = data
        elif event == EVENT_UPDATED:
            incident_id = str(data["id"])
            changed = self._incidents.get(incident_id) != data
            self._incidents[incident_id] = data
        elif event == EVENT_DELETED:
            changed = self._incidents.pop(str(data), None) is not None
        else:
            logger.debug("unknown event ignored: %s", event)
            return False

        if changed and self._on_change is not None:
            self._on_change(event, data)
        return changed

    def reconcile(self, remote: list[dict[str, Any]]) -> ReconcileResult:
        result = ReconcileResult()
        by_id = {str(i["id"]): i for i in remote}

        for incident_id in sorted(by_id.keys() - self._incidents.keys()):
            self.apply(EVENT_NEW, by_id[incident_id])
            result.added.append(incident_id)

        for incident_id in sorted(self._incidents.keys() - by_id.keys()):
            self.apply(EVENT_DELETED, incident_id)
            result.removed.append(incident_id)

        for incident_id, incident in by_id.items():
            local = self._incidents.get(incident_id)
            if local is not None and local.get("status") != incident.get("status"):
                self.apply(EVENT_UPDATED, incident)
                result.updated.append(incident_id)

        return result


class PollingReconciler:
    def __init__(
        self,
        base_url: str,
        view: LocalView,
        interval_seconds: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/incidents"
        self._view = view
        self._interval = interval_seconds
        self._timeout = timeout

    async def fetch(self) -> list[dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(self._url)
            response.raise_for_status()
            return response.json()

    async def poll_once(self) -> ReconcileResult:
        remote = await self.fetch()
        result = self._view.reconcile(remote)
        if result.changed:
            logger.info("reconciled | %s", result.summary())
        return result

    async def run(self) -> None:
        logger.info("reconciler started | url=%s interval=%ss", self._url, self._interval)
        while True:
            try:
                await self.poll_once()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("reconcile fetch failed | error=%s", exc)
            await asyncio.sleep(self._interval)


class PushListener:
    """Подписка на /ws; при обрыве переподключается, новое соединение даёт свежий снапшот."""

    def __init__(self, ws_url: str, view: LocalView, reconnect_delay_seconds: float = 2.0) -> None:
        self._ws_url = ws_url
        self._view = view
        self._reconnect_delay = reconnect_delay_seconds

    def handle_frame(self, raw: str) -> bool:
        try:
            message = json.loads(raw)
            return self._view.apply(message["event"], message.get("data"))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("malformed realtime frame ignored | error=%s", exc)
            return False

    async def listen_once(self) -> None:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(self._ws_url) as ws:
                logger.info("realtime connected | url=%s", self._ws_url)
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        self.handle_frame(msg.data)
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break

    async def run(self) -> None:
        while True:
            try:
                await self.listen_once()
            except aiohttp.ClientError as exc:
                logger.warning("realtime connection failed | error=%s", exc)
            await asyncio.sleep(self._reconnect_delay)
