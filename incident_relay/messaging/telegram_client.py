from __future__ import annotations

import logging
from typing import Any

import httpx

from incident_relay.domain.errors import ChannelDeliveryError
from incident_relay.domain.models import ChannelMessageRef

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"


class TelegramGateway:
    """Тонкая обёртка над Bot API. Любой сбой превращается в ChannelDeliveryError, без повторов."""

    def __init__(self, bot_token: str, timeout: float = 10.0, api_base: str = API_BASE) -> None:
        self._bot_token = bot_token
        self._timeout = timeout
        self._api_base = api_base.rstrip("/")

    async def send_location(self, chat_id: int | str, latitude: float, longitude: float) -> ChannelMessageRef:
        result = await self._call(
            "sendLocation",
            {"chat_id": chat_id, "latitude": latitude, "longitude": longitude},
        )
        return self._message_ref("sendLocation", result)

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_markup: dict[str, Any] | None = None,
    ) -> ChannelMessageRef:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        result = await self._call_markdown("sendMessage", payload)
        return self._message_ref("sendMessage", result)

    async def edit_message_text(
        self,
        ref: ChannelMessageRef,
        text: str,
        reply_markup: dict[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "chat_id": ref.chat_id,
            "message_id": ref.message_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        # Без reply_markup Telegram убирает inline-клавиатуру
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        await self._call_markdown("editMessageText", payload)

    async def answer_callback_query(self, callback_id: str, text: str) -> None:
        await self._call("answerCallbackQuery", {"callback_query_id": callback_id, "text": text})

    async def get_updates(self, offset: int | None, poll_timeout: int) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "timeout": poll_timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        result = await self._call("getUpdates", payload, timeout=self._timeout + poll_timeout)
        return list(result or [])

    async def _call_markdown(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            return await self._call(method, payload)
        except ChannelDeliveryError as exc:
            if exc.status_code == 400 and "can't parse entities" in exc.details.lower():
                logger.warning("%s: markdown rejected, retrying as plain text", method)
                plain = {k: v for k, v in payload.items() if k != "parse_mode"}
                return await self._call(method, plain)
            raise

    async def _call(self, method: str, payload: dict[str, Any], timeout: float | None = None) -> Any:
        if not self._bot_token:
            raise ChannelDeliveryError(method, "TELEGRAM_BOT_TOKEN is empty")

        url = f"{self._api_base}/bot{self._bot_token}/{method}"
        try:
            async with httpx.AsyncClient(timeout=timeout or self._timeout) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise ChannelDeliveryError(method, f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            raise ChannelDeliveryError(
                method, self._extract_telegram_error(response), status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ChannelDeliveryError(method, "invalid JSON in response", response.status_code) from exc

        if not data.get("ok", False):
            raise ChannelDeliveryError(
                method, str(data.get("description") or "ok=false"), response.status_code
            )
        return data.get("result")

    @staticmethod
    def _message_ref(method: str, result: Any) -> ChannelMessageRef:
        try:
            return ChannelMessageRef(
                chat_id=int(result["chat"]["id"]),
                message_id=int(result["message_id"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ChannelDeliveryError(method, f"unexpected result shape: {result!r}") from exc

    @staticmethod
    def _extract_telegram_error(response: httpx.Response) -> str:
        try:
            data = response.json()
            description = data.get("description")
            if description:
                return str(description)
        except Exception:  # noqa: BLE001
            pass
        text = response.text.strip()
        return text if text else "unknown error"
