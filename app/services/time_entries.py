"""Time entry lifecycle: manual entries and the start/stop progress clock.

An entry is either *not started* (``start_progress_time`` is null) or *in
progress*. A user may have at most one entry in progress. ``start`` guards that
invariant three ways: a per-user lock serialises starts inside this process,
the write itself only matches an entry that is not yet running, and the
partial unique index ``uniq_te_in_progress_per_user`` rejects a second running
entry written by another process, so the guarantee holds across workers.
"""

from __future__ import annotations

import asyncio
import logging
import math
import weakref
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.errors import (
    Conflict,
    InvalidRequest,
    InvalidState,
    NotFound,
    parse_object_id,
    storage_errors,
)
from app.utils.dates import to_utc_naive, utcnow


logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600.0
UPDATABLE_FIELDS = {"task_id", "start_time", "total_duration_in_hour"}

_start_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _start_lock(user_id: str) -> asyncio.Lock:
    lock = _start_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _start_locks[user_id] = lock
    return lock


def serialize_entry(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "task_id": str(doc.get("task_id")),
        "user_id": str(doc.get("user_id")),
        "start_time": doc.get("start_time"),
        "total_duration_in_hour": float(doc.get("total_duration_in_hour", 0.0)),
        "start_progress_time": doc.get("start_progress_time"),
        "in_progress": doc.get("start_progress_time") is not None,
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
    }


async def _require_task(db: AsyncIOMotorDatabase, task_oid: ObjectId, user_oid: ObjectId) -> dict:
    task = await db["tasks"].find_one({"_id": task_oid, "user_id": user_oid})
    if not task:
        raise NotFound("Task not found")
    return task


async def _find_in_progress(db: AsyncIOMotorDatabase, user_oid: ObjectId, exclude: Optional[ObjectId] = None) -> Optional[dict]:
    q: dict = {"user_id": user_oid, "start_progress_time": {"$ne": None}}
    if exclude is not None:
        q["_id"] = {"$ne": exclude}
    return await db["time_entries"].find_one(q)


async def start_time_entry(db: AsyncIOMotorDatabase, entry_id: str, user_id: str) -> dict:
    entry_oid = parse_object_id(entry_id, "time entry id")
    user_oid = parse_object_id(user_id, "user id")
    async with _start_lock(str(user_oid)):
        with storage_errors("Starting time entry"):
            entry = await db["time_entries"].find_one({"_id": entry_oid, "user_id": user_oid})
            if not entry:
                raise NotFound("Time entry not found")
            if entry.get("start_progress_time") is not None:
                raise InvalidState("Time entry is already in progress")
            existing = await _find_in_progress(db, user_oid, exclude=entry_oid)
            if existing:
                logger.warning("User %s tried to start %s while %s is in progress", user_id, entry_id, existing["_id"])
                raise Conflict(
                    "You already have a time entry in progress",
                    existing_entry=serialize_entry(existing),
                )
            now = utcnow()
            try:
                updated = await db["time_entries"].find_one_and_update(
                    {"_id": entry_oid, "user_id": user_oid, "start_progress_time": None},
                    {"$set": {"start_progress_time": now, "updated_at": now}},
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # Another worker started an entry between the scan and this write
                existing = await _find_in_progress(db, user_oid, exclude=entry_oid)
                raise Conflict(
                    "You already have a time entry in progress",
                    existing_entry=serialize_entry(existing) if existing else None,
                )
            if updated is None:
                raise InvalidState("Time entry is already in progress")
    logger.info("Started time entry %s for user %s", entry_id, user_id)
    return serialize_entry(updated)


async def stop_time_entry(db: AsyncIOMotorDatabase, entry_id: str, user_id: str) -> dict:
    entry_oid = parse_object_id(entry_id, "time entry id")
    user_oid = parse_object_id(user_id, "user id")
    with storage_errors("Stopping time entry"):
        entry = await db["time_entries"].find_one({"_id": entry_oid, "user_id": user_oid})
        if not entry:
            raise NotFound("Time entry not found")
        started_at = entry.get("start_progress_time")
        if started_at is None:
            raise InvalidState("Time entry is not in progress")
        now = utcnow()
        elapsed_hours = (now - started_at).total_seconds() / SECONDS_PER_HOUR
        # Matching on the observed start time keeps a concurrent stop from adding twice
        updated = await db["time_entries"].find_one_and_update(
            {"_id": entry_oid, "user_id": user_oid, "start_progress_time": started_at},
            {
                "$inc": {"total_duration_in_hour": elapsed_hours},
                "$set": {"start_progress_time": None, "updated_at": now},
            },
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise InvalidState("Time entry is not in progress")
    logger.info("Stopped time entry %s for user %s after %.4f h", entry_id, user_id, elapsed_hours)
    return serialize_entry(updated)


async def create_time_entry(
    db: AsyncIOMotorDatabase,
    start_time: datetime,
    total_duration_in_hour: float,
    task_id: str,
    user_id: str,
) -> dict:
    # Manual entries are never checked for overlaps with other entries
    if total_duration_in_hour is None or total_duration_in_hour < 0:
        raise InvalidRequest("total_duration_in_hour must be a non-negative number")
    task_oid = parse_object_id(task_id, "task id")
    user_oid = parse_object_id(user_id, "user id")
    with storage_errors("Creating time entry"):
        await _require_task(db, task_oid, user_oid)
        now = utcnow()
        doc = {
            "task_id": task_oid,
            "user_id": user_oid,
            "start_time": to_utc_naive(start_time),
            "total_duration_in_hour": float(total_duration_in_hour),
            "start_progress_time": None,
            "created_at": now,
            "updated_at": now,
        }
        res = await db["time_entries"].insert_one(doc)
    doc["_id"] = res.inserted_id
    logger.info("Created time entry %s for user %s", res.inserted_id, user_id)
    return serialize_entry(doc)


async def update_time_entry(db: AsyncIOMotorDatabase, entry_id: str, user_id: str, fields: dict[str, Any]) -> dict:
    if "start_progress_time" in fields:
        raise InvalidRequest("Use the start and stop operations to manage in-progress entries")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidRequest(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    entry_oid = parse_object_id(entry_id, "time entry id")
    user_oid = parse_object_id(user_id, "user id")
    update: dict = {}
    if "total_duration_in_hour" in fields:
        duration = fields["total_duration_in_hour"]
        if duration is None or duration < 0:
            raise InvalidRequest("total_duration_in_hour must be a non-negative number")
        update["total_duration_in_hour"] = float(duration)
    if "start_time" in fields:
        if fields["start_time"] is None:
            raise InvalidRequest("start_time cannot be null")
        update["start_time"] = to_utc_naive(fields["start_time"])
    with storage_errors("Updating time entry"):
        if "task_id" in fields:
            task_oid = parse_object_id(fields["task_id"], "task id")
            await _require_task(db, task_oid, user_oid)
            update["task_id"] = task_oid
        update["updated_at"] = utcnow()
        updated = await db["time_entries"].find_one_and_update(
            {"_id": entry_oid, "user_id": user_oid},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise NotFound("Time entry not found")
    return serialize_entry(updated)


async def delete_time_entry(db: AsyncIOMotorDatabase, entry_id: str, user_id: str) -> None:
    entry_oid = parse_object_id(entry_id, "time entry id")
    user_oid = parse_object_id(user_id, "user id")
    with storage_errors("Deleting time entry"):
        res = await db["time_entries"].delete_one({"_id": entry_oid, "user_id": user_oid})
    if res.deleted_count == 0:
        raise NotFound("Time entry not found")
    logger.info("Deleted time entry %s for user %s", entry_id, user_id)


async def list_time_entries(
    db: AsyncIOMotorDatabase,
    user_id: str,
    task_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    in_progress_only: bool = False,
    page: int = 1,
    limit: int = 10,
) -> dict:
    if page < 1 or limit < 1:
        raise InvalidRequest("page and limit must be at least 1")
    q: dict = {"user_id": parse_object_id(user_id, "user id")}
    if task_id:
        q["task_id"] = parse_object_id(task_id, "task id")
    if start_date:
        q["start_time"] = {"$gte": to_utc_naive(start_date)}
    if end_date:
        q.setdefault("start_time", {}).update({"$lte": to_utc_naive(end_date)})
    if in_progress_only:
        q["start_progress_time"] = {"$ne": None}
    with storage_errors("Listing time entries"):
        total = await db["time_entries"].count_documents(q)
        cursor = db["time_entries"].find(q).sort("start_time", -1).skip((page - 1) * limit).limit(limit)
        entries = [serialize_entry(doc) async for doc in cursor]
    return {
        "entries": entries,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit),
        },
    }
