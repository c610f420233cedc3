from __future__ import annotations


class IncidentRelayError(Exception):
    """Базовая ошибка ядра. Обработчики переводят её в ответ пользователю."""


class ValidationError(IncidentRelayError):
    """Некорректная локация или action token. Побочных эффектов нет."""


class ActionRejected(ValidationError):
    def __init__(self, token: str, reason: str = "unknown action") -> None:
        super().__init__(f"action rejected: token={token!r} reason={reason}")
        self.token = token
        self.reason = reason


class NotFound(IncidentRelayError):
    def __init__(self, what: str) -> None:
        super().__init__(f"not found: {what}")
        self.what = what


class PersistenceError(IncidentRelayError):
    """Хранилище недоступно или операция не выполнилась."""


class ChannelDeliveryError(IncidentRelayError):
    def __init__(self, method: str, details: str, status_code: int | None = None) -> None:
        super().__init__(
            f"Telegram {method} failed. status={status_code}; details={details}"
        )
        self.method = method
        self.details = details
        self.status_code = status_code
