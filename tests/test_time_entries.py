import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.core.errors import Conflict, InvalidRequest, InvalidState, NotFound
from app.services import time_entries as svc


@pytest.fixture
async def setup(factory):
    user = await factory.user()
    customer = await factory.customer(user)
    project = await factory.project(customer)
    task = await factory.task(project)
    return user, task


async def _in_progress_count(db, user) -> int:
    return await db["time_entries"].count_documents({"user_id": user["_id"], "start_progress_time": {"$ne": None}})


async def test_create_manual_entry_starts_not_in_progress(db, setup):
    user, task = setup
    entry = await svc.create_time_entry(db, datetime(2024, 3, 5), 0, str(task["_id"]), str(user["_id"]))
    assert entry["total_duration_in_hour"] == 0
    assert entry["start_progress_time"] is None
    assert entry["in_progress"] is False
    assert await db["time_entries"].count_documents({}) == 1


async def test_create_normalizes_aware_start_time_to_utc(db, setup):
    user, task = setup
    aware = datetime(2024, 3, 5, 2, 0, tzinfo=timezone(timedelta(hours=2)))
    entry = await svc.create_time_entry(db, aware, 1.5, str(task["_id"]), str(user["_id"]))
    assert entry["start_time"] == datetime(2024, 3, 5, 0, 0)


async def test_create_allows_overlapping_entries(db, setup):
    user, task = setup
    for _ in range(2):
        await svc.create_time_entry(db, datetime(2024, 3, 5), 8, str(task["_id"]), str(user["_id"]))
    assert await db["time_entries"].count_documents({"task_id": task["_id"]}) == 2


async def test_create_rejects_unknown_task(db, setup):
    user, _ = setup
    with pytest.raises(NotFound):
        await svc.create_time_entry(db, datetime(2024, 3, 5), 1, str(ObjectId()), str(user["_id"]))


async def test_create_rejects_negative_duration(db, setup):
    user, task = setup
    with pytest.raises(InvalidRequest):
        await svc.create_time_entry(db, datetime(2024, 3, 5), -1, str(task["_id"]), str(user["_id"]))


async def test_start_sets_progress_time(db, factory, setup):
    user, task = setup
    entry = await factory.entry(task, datetime(2024, 3, 5), 1.0)
    started = await svc.start_time_entry(db, str(entry["_id"]), str(user["_id"]))
    assert started["in_progress"] is True
    assert started["start_progress_time"] is not None
    assert started["total_duration_in_hour"] == 1.0


async def test_start_conflicts_with_other_in_progress_entry(db, factory, setup):
    user, task = setup
    running = await factory.entry(task, datetime(2024, 3, 5), in_progress_for=timedelta(minutes=5))
    idle = await factory.entry(task, datetime(2024, 3, 6))
    with pytest.raises(Conflict) as exc_info:
        await svc.start_time_entry(db, str(idle["_id"]), str(user["_id"]))
    assert exc_info.value.context["existing_entry"]["id"] == str(running["_id"])
    assert exc_info.value.status_code == 409
    idle_doc = await db["time_entries"].find_one({"_id": idle["_id"]})
    assert idle_doc["start_progress_time"] is None


async def test_start_unknown_or_foreign_entry_is_not_found(db, factory, setup):
    user, task = setup
    other = await factory.user()
    entry = await factory.entry(task, datetime(2024, 3, 5))
    with pytest.raises(NotFound):
        await svc.start_time_entry(db, str(ObjectId()), str(user["_id"]))
    with pytest.raises(NotFound):
        await svc.start_time_entry(db, str(entry["_id"]), str(other["_id"]))


async def test_start_already_running_entry_is_invalid_state(db, factory, setup):
    user, task = setup
    running = await factory.entry(task, datetime(2024, 3, 5), in_progress_for=timedelta(minutes=1))
    with pytest.raises(InvalidState):
        await svc.start_time_entry(db, str(running["_id"]), str(user["_id"]))


async def test_other_users_running_entry_does_not_conflict(db, factory, setup):
    user, task = setup
    other = await factory.user()
    await factory.entry(task, datetime(2024, 3, 5), in_progress_for=timedelta(minutes=5), user=other)
    mine = await factory.entry(task, datetime(2024, 3, 5))
    started = await svc.start_time_entry(db, str(mine["_id"]), str(user["_id"]))
    assert started["in_progress"] is True


async def test_stop_accumulates_elapsed_hours(db, factory, setup):
    user, task = setup
    entry = await factory.entry(task, datetime(2024, 3, 5), 1.5, in_progress_for=timedelta(hours=2))
    stopped = await svc.stop_time_entry(db, str(entry["_id"]), str(user["_id"]))
    assert stopped["total_duration_in_hour"] == pytest.approx(3.5, abs=1e-3)
    assert stopped["start_progress_time"] is None
    assert stopped["in_progress"] is False


async def test_stop_not_in_progress_is_invalid_state(db, factory, setup):
    user, task = setup
    entry = await factory.entry(task, datetime(2024, 3, 5), 2.0)
    with pytest.raises(InvalidState):
        await svc.stop_time_entry(db, str(entry["_id"]), str(user["_id"]))
    doc = await db["time_entries"].find_one({"_id": entry["_id"]})
    assert doc["total_duration_in_hour"] == 2.0


async def test_stop_unknown_entry_is_not_found(db, setup):
    user, _ = setup
    with pytest.raises(NotFound):
        await svc.stop_time_entry(db, str(ObjectId()), str(user["_id"]))


async def test_start_stop_sequence_keeps_single_running_entry(db, factory, setup):
    user, task = setup
    entries = [await factory.entry(task, datetime(2024, 3, day)) for day in (1, 2, 3)]
    uid = str(user["_id"])
    outcomes = []
    for i, entry in enumerate(entries + entries[::-1]):
        try:
            await svc.start_time_entry(db, str(entry["_id"]), uid)
            outcomes.append("started")
        except (Conflict, InvalidState) as exc:
            outcomes.append(exc.kind)
        assert await _in_progress_count(db, user) <= 1
        if i % 2 == 1:
            running = await db["time_entries"].find_one({"user_id": user["_id"], "start_progress_time": {"$ne": None}})
            await svc.stop_time_entry(db, str(running["_id"]), uid)
            assert await _in_progress_count(db, user) == 0
    assert outcomes == ["started", "conflict", "started", "invalid_state", "started", "conflict"]


async def test_concurrent_starts_admit_one_entry(db, factory, setup):
    user, task = setup
    entries = [await factory.entry(task, datetime(2024, 3, day)) for day in (1, 2, 3, 4)]
    results = await asyncio.gather(
        *(svc.start_time_entry(db, str(e["_id"]), str(user["_id"])) for e in entries),
        return_exceptions=True,
    )
    started = [r for r in results if isinstance(r, dict)]
    assert len(started) == 1
    assert all(isinstance(r, Conflict) for r in results if not isinstance(r, dict))
    assert await _in_progress_count(db, user) == 1


async def test_start_rejected_by_unique_index_is_conflict(db, factory, setup, monkeypatch):
    user, task = setup
    idle = await factory.entry(task, datetime(2024, 3, 5))
    collection_cls = type(db["time_entries"])

    async def _race(self, *args, **kwargs):
        # Another worker starts an entry just before this write lands
        await factory.entry(task, datetime(2024, 3, 6), in_progress_for=timedelta(seconds=1))
        raise DuplicateKeyError("E11000 duplicate key error index: uniq_te_in_progress_per_user")

    monkeypatch.setattr(collection_cls, "find_one_and_update", _race)
    with pytest.raises(Conflict) as exc_info:
        await svc.start_time_entry(db, str(idle["_id"]), str(user["_id"]))

    running = exc_info.value.context["existing_entry"]
    assert running["in_progress"] is True
    assert running["id"] != str(idle["_id"])
    idle_doc = await db["time_entries"].find_one({"_id": idle["_id"]})
    assert idle_doc["start_progress_time"] is None


async def test_update_rejects_direct_progress_edits(db, factory, setup):
    user, task = setup
    entry = await factory.entry(task, datetime(2024, 3, 5))
    with pytest.raises(InvalidRequest):
        await svc.update_time_entry(db, str(entry["_id"]), str(user["_id"]), {"start_progress_time": datetime(2024, 3, 5)})
    with pytest.raises(InvalidRequest):
        await svc.update_time_entry(db, str(entry["_id"]), str(user["_id"]), {"start_progress_time": None})


async def test_update_merges_provided_fields(db, factory, setup):
    user, task = setup
    entry = await factory.entry(task, datetime(2024, 3, 5), 1.0)
    updated = await svc.update_time_entry(db, str(entry["_id"]), str(user["_id"]), {"total_duration_in_hour": 4.25})
    assert updated["total_duration_in_hour"] == 4.25
    assert updated["start_time"] == datetime(2024, 3, 5)
    assert updated["task_id"] == str(task["_id"])


async def test_update_can_move_entry_to_another_own_task(db, factory, setup):
    user, task = setup
    project = await db["projects"].find_one({"_id": task["project_id"]})
    other_task = await factory.task(project, name="Review")
    entry = await factory.entry(task, datetime(2024, 3, 5), 1.0)
    updated = await svc.update_time_entry(db, str(entry["_id"]), str(user["_id"]), {"task_id": str(other_task["_id"])})
    assert updated["task_id"] == str(other_task["_id"])


async def test_update_unknown_entry_is_not_found(db, setup):
    user, _ = setup
    with pytest.raises(NotFound):
        await svc.update_time_entry(db, str(ObjectId()), str(user["_id"]), {"total_duration_in_hour": 1})


async def test_delete_removes_entry_once(db, factory, setup):
    user, task = setup
    entry = await factory.entry(task, datetime(2024, 3, 5))
    await svc.delete_time_entry(db, str(entry["_id"]), str(user["_id"]))
    assert await db["time_entries"].count_documents({}) == 0
    with pytest.raises(NotFound):
        await svc.delete_time_entry(db, str(entry["_id"]), str(user["_id"]))


async def test_malformed_identifier_is_invalid_request(db, setup):
    user, _ = setup
    with pytest.raises(InvalidRequest):
        await svc.start_time_entry(db, "not-an-id", str(user["_id"]))


async def test_list_paginates_newest_first(db, factory, setup):
    user, task = setup
    for day in range(1, 13):
        await factory.entry(task, datetime(2024, 3, day), 1.0)
    page = await svc.list_time_entries(db, str(user["_id"]), page=2, limit=5)
    assert page["pagination"] == {"total": 12, "page": 2, "limit": 5, "pages": 3}
    assert [e["start_time"].day for e in page["entries"]] == [7, 6, 5, 4, 3]


async def test_list_filters(db, factory, setup):
    user, task = setup
    project = await db["projects"].find_one({"_id": task["project_id"]})
    other_task = await factory.task(project, name="Other")
    await factory.entry(task, datetime(2024, 3, 1), 1.0)
    await factory.entry(task, datetime(2024, 3, 10), 1.0)
    await factory.entry(other_task, datetime(2024, 3, 20), 1.0, in_progress_for=timedelta(minutes=3))
    await factory.entry(task, datetime(2024, 3, 31), 1.0)
    uid = str(user["_id"])

    in_range = await svc.list_time_entries(db, uid, start_date=datetime(2024, 3, 10), end_date=datetime(2024, 3, 31))
    assert in_range["pagination"]["total"] == 3

    by_task = await svc.list_time_entries(db, uid, task_id=str(other_task["_id"]))
    assert [e["task_id"] for e in by_task["entries"]] == [str(other_task["_id"])]

    running = await svc.list_time_entries(db, uid, in_progress_only=True)
    assert running["pagination"]["total"] == 1
    assert running["entries"][0]["in_progress"] is True


async def test_list_excludes_other_users(db, factory, setup):
    user, task = setup
    other = await factory.user()
    await factory.entry(task, datetime(2024, 3, 1), 1.0, user=other)
    result = await svc.list_time_entries(db, str(user["_id"]))
    assert result["entries"] == []
    assert result["pagination"]["pages"] == 0
