from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.security import get_current_user
from app.db.mongo import get_mongo_db
from app.schemas.time_entry_schema import TimeEntryIn, TimeEntryListOut, TimeEntryOut, TimeEntryUpdate
from app.services import time_entries as svc


router = APIRouter(prefix="/time-entries", tags=["time-entries"])


@router.get("", response_model=TimeEntryListOut)
async def list_time_entries(
    task_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Inclusive lower bound on start_time"),
    end_date: Optional[datetime] = Query(None, description="Inclusive upper bound on start_time"),
    in_progress_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    current_user=Depends(get_current_user),
):
    return await svc.list_time_entries(
        db,
        current_user["id"],
        task_id=task_id,
        start_date=start_date,
        end_date=end_date,
        in_progress_only=in_progress_only,
        page=page,
        limit=limit,
    )


@router.post("", response_model=TimeEntryOut, status_code=status.HTTP_201_CREATED)
async def create_time_entry(payload: TimeEntryIn, db: AsyncIOMotorDatabase = Depends(get_mongo_db), current_user=Depends(get_current_user)):
    return await svc.create_time_entry(
        db,
        start_time=payload.start_time,
        total_duration_in_hour=payload.total_duration_in_hour,
        task_id=payload.task_id,
        user_id=current_user["id"],
    )


@router.put("/{entry_id}/start", response_model=TimeEntryOut)
async def start_time_entry(entry_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_mongo_db), current_user=Depends(get_current_user)):
    return await svc.start_time_entry(db, entry_id, current_user["id"])


@router.put("/{entry_id}/stop", response_model=TimeEntryOut)
async def stop_time_entry(entry_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_mongo_db), current_user=Depends(get_current_user)):
    return await svc.stop_time_entry(db, entry_id, current_user["id"])


# PUT and PATCH both apply a partial update
@router.put("/{entry_id}", response_model=TimeEntryOut)
@router.patch("/{entry_id}", response_model=TimeEntryOut)
async def update_time_entry(
    payload: TimeEntryUpdate,
    entry_id: str = Path(...),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    current_user=Depends(get_current_user),
):
    fields = payload.model_dump(exclude_unset=True)
    return await svc.update_time_entry(db, entry_id, current_user["id"], fields)


@router.delete("/{entry_id}")
async def delete_time_entry(entry_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_mongo_db), current_user=Depends(get_current_user)):
    await svc.delete_time_entry(db, entry_id, current_user["id"])
    return {"status": "deleted", "id": entry_id}
