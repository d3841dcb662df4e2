from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.security import get_current_user
from app.db.mongo import get_mongo_db
from app.schemas.report_schema import AvailableMonthOut, GenerateReportIn
from app.services.report_engine import generate_report, get_available_months
from app.services.report_store import get_report, list_reports


router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/available-months/{customer_id}", response_model=list[AvailableMonthOut])
async def available_months(customer_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_mongo_db), current_user=Depends(get_current_user)):
    return await get_available_months(db, customer_id, current_user["id"])


# Report payloads are plain dicts; timesheets carry no total_cost key at any level
@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate(payload: GenerateReportIn, db: AsyncIOMotorDatabase = Depends(get_mongo_db), current_user=Depends(get_current_user)):
    return await generate_report(
        db,
        customer_id=payload.customer_id,
        year=payload.year,
        month=payload.month,
        report_type=payload.report_type,
        user_id=current_user["id"],
    )


@router.get("")
async def reports_index(
    customer_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    current_user=Depends(get_current_user),
):
    return await list_reports(db, current_user["id"], customer_id=customer_id, page=page, limit=limit)


@router.get("/{report_id}")
async def read_report(report_id: str = Path(...), db: AsyncIOMotorDatabase = Depends(get_mongo_db), current_user=Depends(get_current_user)):
    return await get_report(db, report_id, current_user["id"])
