from __future__ import annotations

"""
Realtime fan-out событий жизненного цикла на подключённые дашборды.

Каждый зритель получает свою очередь и свою writer-задачу, поэтому события
доходят до него в порядке эмиссии. Доставка at-least-once в пределах
соединения; после переподключения зритель получает свежий снапшот.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from incident_relay.domain.errors import PersistenceError
from incident_relay.domain.models import Incident
from incident_relay.storage.repository import AsyncIncidentStore

logger = logging.getLogger(__name__)

EVENT_INITIAL = "initial_incidents"
EVENT_NEW = "new_incident"
EVENT_UPDATED = "incident_updated"
EVENT_DELETED = "incident_deleted"

SendFn = Callable[[dict[str, Any]], Awaitable[None]]

_viewer_ids = itertools.count(1)


def frame(event: str, data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}


@dataclass
class Viewer:
    send: SendFn
    id: int = field(default_factory=lambda: next(_viewer_ids))
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: asyncio.Task | None = None


class FanoutHub:
    def __init__(self, store: AsyncIncidentStore) -> None:
        self._store = store
        self._viewers: dict[int, Viewer] = {}

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    async def connect(self, send: SendFn) -> Viewer:
        # Регистрируем до чтения снапшота: события, пришедшие во время чтения,
        # копятся в очереди и уходят после initial_incidents.
        viewer = Viewer(send=send)
        self._viewers[viewer.id] = viewer
        logger.info("viewer connected | viewer=%d total=%d", viewer.id, len(self._viewers))

        try:
            snapshot = await self._store.list_all()
        except PersistenceError as exc:
            logger.error("initial snapshot failed | viewer=%d error=%s", viewer.id, exc)
        else:
            try:
                await send(frame(EVENT_INITIAL, [i.to_wire() for i in snapshot]))
            except Exception as exc:  # noqa: BLE001
                logger.warning("initial send failed, dropping viewer | viewer=%d error=%s", viewer.id, exc)
                self._viewers.pop(viewer.id, None)
                return viewer

        viewer.task = asyncio.create_task(self._drain(viewer), name=f"fanout-viewer-{viewer.id}")
        return viewer

    async def disconnect(self, viewer: Viewer) -> None:
        if self._viewers.pop(viewer.id, None) is not None:
            logger.info("viewer disconnected | viewer=%d total=%d", viewer.id, len(self._viewers))
        if viewer.task is not None and not viewer.task.done():
            viewer.task.cancel()
            try:
                await viewer.task
            except asyncio.CancelledError:
                pass
        self._discard(viewer)

    def broadcast(self, event: str, data: Any) -> int:
        message = frame(event, data)
        viewers = list(self._viewers.values())
        for viewer in viewers:
            viewer.queue.put_nowait(message)
        logger.debug("broadcast | event=%s viewers=%d", event, len(viewers))
        return len(viewers)

    def incident_created(self, incident: Incident) -> int:
        return self.broadcast(EVENT_NEW, incident.to_wire())

    def incident_updated(self, incident: Incident) -> int:
        return self.broadcast(EVENT_UPDATED, incident.to_wire())

    def incident_deleted(self, incident_id: str) -> int:
        return self.broadcast(EVENT_DELETED, incident_id)

    async def flush(self) -> None:
        """Ждёт, пока все очереди будут отправлены."""
        await asyncio.gather(
            *(v.queue.join() for v in list(self._viewers.values()) if v.task is not None)
        )

    async def close(self) -> None:
        for viewer in list(self._viewers.values()):
            await self.disconnect(viewer)

    async def _drain(self, viewer: Viewer) -> None:
        while True:
            message = await viewer.queue.get()
            try:
                await viewer.send(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("send failed, dropping viewer | viewer=%d error=%s", viewer.id, exc)
                self._viewers.pop(viewer.id, None)
                viewer.queue.task_done()
                self._discard(viewer)
                return
            viewer.queue.task_done()

    @staticmethod
    def _discard(viewer: Viewer) -> None:
        # Непрочитанные события отброшенного зрителя считаем обработанными
        while not viewer.queue.empty():
            viewer.queue.get_nowait()
            viewer.queue.task_done()
