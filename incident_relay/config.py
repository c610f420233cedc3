from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def load_dotenv(path: str = ".env") -> int:
    """Подгружает .env в os.environ, не перетирая уже заданные переменные."""
    env_path = Path(path)
    if not env_path.exists():
        return 0

    loaded = 0
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value
            loaded += 1
    return loaded


def _parse_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_chat_id(raw: str) -> int | str:
    # Группы: отрицательные числовые id, каналы могут быть @username
    raw = raw.strip()
    try:
        return int(raw)
    except ValueError:
        return raw


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    telegram_group_id: int | str
    database_url: str
    web_server_host: str
    web_server_port: int
    static_dir: str
    io_timeout_seconds: float
    telegram_poll_timeout_seconds: int
    reconcile_interval_seconds: float
    log_level: str
    json_logs: bool

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            telegram_group_id=_parse_chat_id(os.getenv("TELEGRAM_GROUP_ID", "")),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./data/incidents.db"),
            web_server_host=os.getenv("WEB_SERVER_HOST", "0.0.0.0"),
            web_server_port=int(os.getenv("WEB_SERVER_PORT", "3000")),
            static_dir=os.getenv("STATIC_DIR", "public"),
            io_timeout_seconds=float(os.getenv("IO_TIMEOUT_SECONDS", "10")),
            telegram_poll_timeout_seconds=int(os.getenv("TELEGRAM_POLL_TIMEOUT_SECONDS", "30")),
            reconcile_interval_seconds=float(os.getenv("RECONCILE_INTERVAL_SECONDS", "1.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            json_logs=_parse_bool("LOG_FORMAT_JSON", False),
        )

    def missing_required(self) -> list[str]:
        missing = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if self.telegram_group_id == "":
            missing.append("TELEGRAM_GROUP_ID")
        if not self.database_url:
            missing.append("DATABASE_URL")
        return missing
