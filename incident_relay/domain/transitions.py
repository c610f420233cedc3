from __future__ import annotations

"""
Маппинг action token -> новый статус инцидента.

Токен кнопки: <verb>_<qualifier>_<actor-id>, например tow_eagles_1234.
На статус влияют только verb и qualifier, actor-id нужен для аудита.
"""

from dataclasses import dataclass

from incident_relay.domain.errors import ActionRejected

INITIAL_STATUS = "active"

STATUS_TOW_EAGLES = "Tow Requested: Eagles 24"
STATUS_TOW_OTHER = "Tow Requested: Other"
STATUS_SCENE_CLEARED = "Scene Cleared"


@dataclass(frozen=True)
class Transition:
    status: str
    terminal: bool
    verb: str
    qualifier: str
    actor_id: str


def build_action_token(verb: str, qualifier: str, actor_id: int | str) -> str:
    return f"{verb}_{qualifier}_{actor_id}"


def resolve_action(token: str) -> Transition:
    parts = (token or "").split("_")
    if len(parts) != 3 or not all(parts):
        raise ActionRejected(token, "malformed token")

    verb, qualifier, actor_id = parts

    if verb == "tow":
        status = STATUS_TOW_EAGLES if qualifier == "eagles" else STATUS_TOW_OTHER
        return Transition(status, False, verb, qualifier, actor_id)

    if verb == "scene" and qualifier == "cleared":
        # Terminal: после него кнопки в группе убираются
        return Transition(STATUS_SCENE_CLEARED, True, verb, qualifier, actor_id)

    raise ActionRejected(token)
