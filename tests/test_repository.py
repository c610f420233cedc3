import asyncio
import time

import pytest

from conftest import hold_write_lock, make_new_incident
from incident_relay.domain.errors import PersistenceError
from incident_relay.storage.repository import AsyncIncidentStore, IncidentRepository


def test_create_assigns_id_and_timestamps(repo: IncidentRepository) -> None:
    incident = repo.create(make_new_incident(message_id=101))

    assert len(incident.id) == 32
    assert incident.status == "active"
    assert incident.timestamp is not None
    assert incident.last_updated == incident.timestamp
    assert repo.get(incident.id) == incident


def test_ids_are_unique(repo: IncidentRepository) -> None:
    a = repo.create(make_new_incident(message_id=1))
    b = repo.create(make_new_incident(message_id=2))

    assert a.id != b.id


def test_find_by_channel_message(repo: IncidentRepository) -> None:
    incident = repo.create(make_new_incident(message_id=101))
    repo.create(make_new_incident(message_id=102))

    found = repo.find_by_channel_message(incident.telegram_chat_id, 101)

    assert found is not None
    assert found.id == incident.id
    assert repo.find_by_channel_message(incident.telegram_chat_id, 999) is None
    assert repo.find_by_channel_message(12345, 101) is None


def test_duplicate_channel_message_is_rejected(repo: IncidentRepository) -> None:
    repo.create(make_new_incident(message_id=101))

    with pytest.raises(PersistenceError):
        repo.create(make_new_incident(message_id=101))

    assert len(repo.list_all()) == 1


def test_update_status_overwrites_last_updated(repo: IncidentRepository) -> None:
    incident = repo.create(make_new_incident())

    updated = repo.update_status(incident.id, "Scene Cleared")

    assert updated is not None
    assert updated.status == "Scene Cleared"
    assert updated.last_updated >= incident.last_updated
    assert updated.timestamp == incident.timestamp


def test_update_status_accepts_any_value(repo: IncidentRepository) -> None:
    incident = repo.create(make_new_incident())
    repo.update_status(incident.id, "Scene Cleared")

    assert repo.update_status(incident.id, "active").status == "active"


def test_update_missing_returns_none(repo: IncidentRepository) -> None:
    assert repo.update_status("missing", "Scene Cleared") is None


def test_delete(repo: IncidentRepository) -> None:
    incident = repo.create(make_new_incident())

    assert repo.delete(incident.id) is True
    assert repo.delete(incident.id) is False
    assert repo.get(incident.id) is None
    assert repo.list_all() == []


def test_list_all_returns_every_incident(repo: IncidentRepository) -> None:
    created = [repo.create(make_new_incident(message_id=i)) for i in range(1, 4)]

    assert {i.id for i in repo.list_all()} == {i.id for i in created}


def test_state_survives_new_repository_instance(tmp_path) -> None:
    url = f"sqlite:///{tmp_path}/shared.db"
    incident = IncidentRepository(url).create(make_new_incident())

    assert IncidentRepository(url).get(incident.id) == incident


def test_unsupported_url_fails_fast() -> None:
    with pytest.raises(PersistenceError):
        IncidentRepository("mysql://localhost/db")


def test_async_store_wraps_repository(store: AsyncIncidentStore) -> None:
    async def scenario() -> None:
        incident = await store.create(make_new_incident(message_id=5))
        assert await store.get(incident.id) == incident
        assert (await store.find_by_channel_message(incident.telegram_chat_id, 5)).id == incident.id
        assert (await store.update_status(incident.id, "Tow Requested: Other")).status == "Tow Requested: Other"
        assert await store.delete(incident.id) is True
        assert await store.list_all() == []

    asyncio.run(scenario())


def test_locked_write_times_out_and_leaves_row_unchanged(tmp_path) -> None:
    repo = IncidentRepository(f"sqlite:///{tmp_path}/locked.db", timeout=0.1)
    incident = repo.create(make_new_incident())

    with hold_write_lock(tmp_path / "locked.db"):
        with pytest.raises(PersistenceError):
            repo.update_status(incident.id, "Scene Cleared")
        assert repo.get(incident.id).status == "active"

    time.sleep(0.2)
    assert repo.get(incident.id) == incident


def test_long_statement_is_interrupted_at_deadline(tmp_path) -> None:
    repo = IncidentRepository(f"sqlite:///{tmp_path}/slow.db", timeout=0.1)
    endless = "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) SELECT count(*) FROM c"

    started = time.monotonic()
    with pytest.raises(PersistenceError, match="timed out"):
        with repo._conn() as conn:
            conn.execute(endless).fetchone()

    assert time.monotonic() - started < 5


def test_cancelled_store_call_returns_after_worker_finishes(repo: IncidentRepository, monkeypatch) -> None:
    incident = repo.create(make_new_incident())
    real_update = repo.update_status
    finished: list[bool] = []

    def slow_update(incident_id, status):
        time.sleep(0.2)
        result = real_update(incident_id, status)
        finished.append(True)
        return result

    monkeypatch.setattr(repo, "update_status", slow_update)
    store = AsyncIncidentStore(repo)

    async def scenario() -> None:
        task = asyncio.create_task(store.update_status(incident.id, "Scene Cleared"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert finished == [True]

    asyncio.run(scenario())

    assert repo.get(incident.id).status == "Scene Cleared"
