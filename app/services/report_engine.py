from __future__ import annotations

import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.errors import InvalidRequest, NotFound, parse_object_id, storage_errors
from app.schemas.common import ReportType
from app.services.billing_calendar import count_working_days, month_window
from app.services.report_hierarchy import build_hierarchy
from app.services.report_store import save_report, snapshot_contracts, to_summary
from app.utils.dates import utcnow


logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 2100


async def get_available_months(db: AsyncIOMotorDatabase, customer_id: str, user_id: str) -> list[dict]:
    """Distinct (year, month) pairs with at least one entry for the customer, newest first."""
    customer_oid = parse_object_id(customer_id, "customer id")
    user_oid = parse_object_id(user_id, "user id")
    with storage_errors("Loading available months"):
        project_ids = [p["_id"] async for p in db["projects"].find({"customer_id": customer_oid, "user_id": user_oid}, {"_id": 1})]
        if not project_ids:
            return []
        task_ids = [t["_id"] async for t in db["tasks"].find({"project_id": {"$in": project_ids}, "user_id": user_oid}, {"_id": 1})]
        if not task_ids:
            return []
        pipeline = [
            {"$match": {"task_id": {"$in": task_ids}, "user_id": user_oid}},
            {"$project": {"year": {"$year": "$start_time"}, "month": {"$month": "$start_time"}}},
            {"$group": {"_id": {"year": "$year", "month": "$month"}}},
        ]
        months = {(row["_id"]["year"], row["_id"]["month"]) async for row in db["time_entries"].aggregate(pipeline)}
    return [{"year": y, "month": m} for y, m in sorted(months, reverse=True)]


async def generate_report(
    db: AsyncIOMotorDatabase,
    customer_id: str,
    year: int,
    month: int,
    report_type: ReportType | str,
    user_id: str,
) -> dict:
    customer_oid = parse_object_id(customer_id, "customer id")
    user_oid = parse_object_id(user_id, "user id")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidRequest("Invalid year")
    if not 1 <= month <= 12:
        raise InvalidRequest("Invalid month")
    try:
        report_type = ReportType(report_type)
    except ValueError as exc:
        raise InvalidRequest("Invalid report type") from exc
    invoice = report_type is ReportType.invoice

    with storage_errors("Generating report"):
        customer = await db["customers"].find_one({"_id": customer_oid, "user_id": user_oid})
        if not customer:
            raise InvalidRequest("Customer not found")
        user = await db["users"].find_one({"_id": user_oid})
        if not user:
            raise NotFound("User not found")

        start_date, end_date = month_window(year, month)
        hierarchy = await build_hierarchy(db, customer, user_oid, with_cost=invoice)

        total_hours = 0.0
        total_cost = 0.0 if invoice else None
        if hierarchy.task_ids:
            cursor = db["time_entries"].find({
                "task_id": {"$in": hierarchy.task_ids},
                "user_id": user_oid,
                "start_time": {"$gte": start_date, "$lte": end_date},
            }).sort("start_time", 1)
            async for entry in cursor:
                group, project, task = hierarchy.locate(entry["task_id"])
                hours = float(entry.get("total_duration_in_hour", 0.0))
                cost = group.rate.hourly_rate * hours if invoice else None
                task.add(hours, cost)
                project.add(hours, cost)
                group.add(hours, cost)
                total_hours += hours
                if total_cost is not None:
                    total_cost += cost
        hierarchy.prune()

    summary: dict = {"total_days": count_working_days(start_date, end_date), "total_hours": total_hours}
    if total_cost is not None:
        summary["total_cost"] = total_cost
    snapshot = {
        "report_type": report_type.value,
        "customer_id": customer_oid,
        "user_id": user_oid,
        "generation_date": utcnow(),
        "period": {"year": year, "month": month, "start_date": start_date, "end_date": end_date},
        "summary": summary,
        "customer": {"name": customer.get("name", ""), "address": customer.get("address")},
        "user": {
            "full_name": f"{user.get('first_name', '')} {user.get('last_name', '')}".strip(),
            "email": user.get("email", ""),
        },
        "contracts": snapshot_contracts(hierarchy),
    }
    snapshot["created_at"] = snapshot["generation_date"]
    saved = await save_report(db, snapshot)
    logger.info(
        "Generated %s report for customer %s: %d contract group(s), %.2f h",
        report_type.value, customer_id, len(saved["contracts"]), total_hours,
    )
    return to_summary(saved)
