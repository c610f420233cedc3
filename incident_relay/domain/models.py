from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Reporter:
    id: int
    name: str
    username: str = ""

    @property
    def handle(self) -> str:
        return f"@{self.username}" if self.username else "@N/A"


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ChannelMessageRef:
    """(chat id, message id) сообщения в группе, ключ связи с записью в БД."""
    chat_id: int
    message_id: int


@dataclass(frozen=True)
class NewIncident:
    reporter: Reporter
    location: Location
    status: str
    channel_ref: ChannelMessageRef


@dataclass(frozen=True)
class Incident:
    id: str
    reporter_id: int
    reporter_name: str
    latitude: float
    longitude: float
    status: str
    telegram_chat_id: int
    telegram_message_id: int
    timestamp: datetime
    last_updated: datetime | None = None

    @property
    def channel_ref(self) -> ChannelMessageRef:
        return ChannelMessageRef(self.telegram_chat_id, self.telegram_message_id)

    def to_wire(self) -> dict[str, Any]:
        # Имена полей: контракт для дашборда, не переименовывать.
        return {
            "id": self.id,
            "reporter_id": self.reporter_id,
            "reporter_name": self.reporter_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "status": self.status,
            "telegram_message_id": self.telegram_message_id,
            "telegram_chat_id": self.telegram_chat_id,
            "timestamp": self.timestamp.isoformat(),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class ActionEvent:
    """Нажатие inline-кнопки в группе (callback_query)."""
    callback_id: str
    channel_ref: ChannelMessageRef
    token: str
    actor: Reporter
    message_text: str = ""
    reply_markup: dict[str, Any] | None = None
