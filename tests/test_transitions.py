import pytest

from incident_relay.domain.errors import ActionRejected, ValidationError
from incident_relay.domain.transitions import (
    STATUS_SCENE_CLEARED,
    STATUS_TOW_EAGLES,
    STATUS_TOW_OTHER,
    build_action_token,
    resolve_action,
)


def test_tow_eagles_maps_to_eagles_24() -> None:
    transition = resolve_action("tow_eagles_1234")

    assert transition.status == STATUS_TOW_EAGLES == "Tow Requested: Eagles 24"
    assert transition.terminal is False
    assert transition.actor_id == "1234"


def test_tow_with_any_other_qualifier_is_other() -> None:
    assert resolve_action("tow_other_1").status == STATUS_TOW_OTHER
    assert resolve_action("tow_flatbed_1").status == STATUS_TOW_OTHER


def test_scene_cleared_is_terminal() -> None:
    transition = resolve_action("scene_cleared_42")

    assert transition.status == STATUS_SCENE_CLEARED == "Scene Cleared"
    assert transition.terminal is True


@pytest.mark.parametrize("token", ["bogus_token_1", "scene_open_1", "tow_eagles", "", "tow__1", "tow_eagles_1_2"])
def test_unrecognized_tokens_are_rejected(token: str) -> None:
    with pytest.raises(ActionRejected) as info:
        resolve_action(token)

    assert isinstance(info.value, ValidationError)
    assert info.value.token == token


def test_resolve_is_deterministic_regardless_of_call_order() -> None:
    tokens = ["scene_cleared_1", "tow_eagles_2", "tow_other_3"]
    first = [resolve_action(t).status for t in tokens]
    second = [resolve_action(t).status for t in reversed(tokens)]

    assert first == list(reversed(second))


def test_status_ignores_actor_id() -> None:
    assert resolve_action("tow_eagles_1").status == resolve_action("tow_eagles_999").status


def test_build_action_token_round_trips_through_resolve() -> None:
    token = build_action_token("tow", "eagles", 77)

    assert token == "tow_eagles_77"
    assert resolve_action(token).actor_id == "77"
