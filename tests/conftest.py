import asyncio
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator

import pytest

from incident_relay.core.coordinator import LifecycleCoordinator
from incident_relay.domain.errors import ChannelDeliveryError
from incident_relay.domain.models import ChannelMessageRef, Location, NewIncident, Reporter
from incident_relay.realtime.fanout import FanoutHub
from incident_relay.storage.repository import AsyncIncidentStore, IncidentRepository

GROUP_CHAT_ID = -100500


class FakeGateway:
    """Записывает вызовы Bot API вместо HTTP-запросов."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.edit_delay = 0.0
        self._next_message_id = 100
        self._failures: dict[str, list[Exception]] = {}

    def fail_next(self, method: str, exc: Exception | None = None) -> None:
        self._failures.setdefault(method, []).append(
            exc or ChannelDeliveryError(method, "Bad Request: chat not found", 400)
        )

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method]

    def _maybe_fail(self, method: str) -> None:
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def _ref(self, chat_id: Any) -> ChannelMessageRef:
        self._next_message_id += 1
        return ChannelMessageRef(int(chat_id), self._next_message_id)

    async def send_location(self, chat_id, latitude, longitude) -> ChannelMessageRef:
        self.calls.append({"method": "send_location", "chat_id": chat_id, "lat": latitude, "lon": longitude})
        self._maybe_fail("send_location")
        return self._ref(chat_id)

    async def send_message(self, chat_id, text, reply_markup=None) -> ChannelMessageRef:
        self.calls.append(
            {"method": "send_message", "chat_id": chat_id, "text": text, "reply_markup": reply_markup}
        )
        self._maybe_fail("send_message")
        return self._ref(chat_id)

    async def edit_message_text(self, ref, text, reply_markup=None) -> None:
        self.calls.append({"method": "edit_start", "ref": ref, "text": text})
        if self.edit_delay:
            await asyncio.sleep(self.edit_delay)
        self.calls.append(
            {"method": "edit_message_text", "ref": ref, "text": text, "reply_markup": reply_markup}
        )
        self._maybe_fail("edit_message_text")

    async def answer_callback_query(self, callback_id, text) -> None:
        self.calls.append({"method": "answer_callback_query", "callback_id": callback_id, "text": text})
        self._maybe_fail("answer_callback_query")


class RecordingViewer:
    def __init__(self, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def send(self, frame: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionResetError("viewer went away")
        self.frames.append(frame)

    @property
    def events(self) -> list[str]:
        return [f["event"] for f in self.frames]


def make_new_incident(message_id: int = 1, chat_id: int = GROUP_CHAT_ID) -> NewIncident:
    return NewIncident(
        reporter=Reporter(7, "Alice", "alice"),
        location=Location(-25.75, 28.23),
        status="active",
        channel_ref=ChannelMessageRef(chat_id, message_id),
    )


@pytest.fixture
def repo(tmp_path) -> IncidentRepository:
    return IncidentRepository(f"sqlite:///{tmp_path}/test.db")


@pytest.fixture
def store(repo) -> AsyncIncidentStore:
    return AsyncIncidentStore(repo)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def hub(store) -> FanoutHub:
    return FanoutHub(store)


@pytest.fixture
def coordinator(store, gateway, hub) -> LifecycleCoordinator:
    return LifecycleCoordinator(store, gateway, hub, GROUP_CHAT_ID)


@contextmanager
def hold_write_lock(db_path) -> Iterator[None]:
    """Держит RESERVED-блокировку SQLite: чтение проходит, запись ждёт."""
    blocker = sqlite3.connect(db_path, isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        yield
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()
