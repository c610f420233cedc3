from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone

# Атрибуты LogRecord, которые не попадают в JSON как extra-поля
_RESERVED = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName", "color_message",
}

# Болтливые библиотеки: на INFO логируют каждый запрос к Telegram
_QUIET_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """
    Одна строка JSON на запись:
    {"ts":"2026-10-16T10:00:00.123Z","level":"INFO","logger":"incident_relay.core.coordinator","msg":"..."}

    Поля из logger.info(..., extra={...}) добавляются на верхний уровень.
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict = {
            "ts": ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, val in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = val

        if record.exc_info:
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json_logs: bool | None = None) -> None:
    """
    Настраивает root-логгер для сервиса и пропускает через него логи uvicorn.

    json_logs=None: JSON если LOG_FORMAT=json или stdout не TTY.
    """
    if json_logs is None:
        json_logs = os.getenv("LOG_FORMAT", "").lower() == "json" or not os.isatty(1)

    handler = logging.StreamHandler()
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.handlers.clear()
        uv.propagate = True

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
