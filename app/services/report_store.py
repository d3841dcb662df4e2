from __future__ import annotations

import logging
import math
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.errors import InvalidRequest, NotFound, parse_object_id, storage_errors
from app.services.report_hierarchy import ReportHierarchy


logger = logging.getLogger(__name__)


def _with_cost(node: dict, total_cost: Optional[float]) -> dict:
    if total_cost is not None:
        node["total_cost"] = total_cost
    return node


def snapshot_contracts(hierarchy: ReportHierarchy) -> list[dict]:
    """Render a pruned hierarchy as the stored ``contracts`` tree."""
    contracts: list[dict] = []
    for group in hierarchy.groups.values():
        projects = []
        for project in group.projects.values():
            tasks = [
                _with_cost({"task_id": t.task_id, "task_name": t.name, "total_hours": t.total_hours}, t.total_cost)
                for t in project.tasks.values()
            ]
            projects.append(_with_cost({
                "project_id": project.project_id,
                "project_name": project.name,
                "total_hours": project.total_hours,
                "tasks": tasks,
            }, project.total_cost))
        contracts.append(_with_cost({
            "contract_id": group.contract_id,
            "contract_name": group.name,
            "daily_rate": group.rate.daily_rate,
            "currency": group.rate.currency,
            "total_hours": group.total_hours,
            "projects": projects,
        }, group.total_cost))
    return contracts


async def save_report(db: AsyncIOMotorDatabase, snapshot: dict) -> dict:
    """Insert a snapshot. Reports are written once and never updated."""
    with storage_errors("Saving report"):
        res = await db["reports"].insert_one(snapshot)
    snapshot["_id"] = res.inserted_id
    logger.info(
        "Saved %s report %s for customer %s (%s-%02d)",
        snapshot["report_type"], res.inserted_id, snapshot["customer_id"],
        snapshot["period"]["year"], snapshot["period"]["month"],
    )
    return snapshot


def _external(node: dict, id_key: str, name_key: str) -> dict:
    out = {
        id_key: str(node[id_key]) if node.get(id_key) is not None else None,
        name_key: node.get(name_key, ""),
        "total_hours": node.get("total_hours", 0.0),
    }
    if "total_cost" in node:
        out["total_cost"] = node["total_cost"]
    return out


def to_summary(doc: dict) -> dict:
    """Stable external shape of a stored report."""
    summary = doc.get("summary", {})
    period = doc.get("period", {})
    contracts = []
    for c in doc.get("contracts", []):
        contract = _external(c, "contract_id", "contract_name")
        contract["daily_rate"] = c.get("daily_rate")
        contract["currency"] = c.get("currency")
        contract["projects"] = []
        for p in c.get("projects", []):
            project = _external(p, "project_id", "project_name")
            project["tasks"] = [_external(t, "task_id", "task_name") for t in p.get("tasks", [])]
            contract["projects"].append(project)
        contracts.append(contract)
    out = {
        "report_id": str(doc["_id"]),
        "report_type": doc.get("report_type"),
        "customer_id": str(doc.get("customer_id")),
        "customer_name": (doc.get("customer") or {}).get("name", ""),
        "customer_address": (doc.get("customer") or {}).get("address"),
        "user_full_name": (doc.get("user") or {}).get("full_name", ""),
        "user_email": (doc.get("user") or {}).get("email", ""),
        "generation_date": doc.get("generation_date"),
        "year": period.get("year"),
        "month": period.get("month"),
        "start_date": period.get("start_date"),
        "end_date": period.get("end_date"),
        "total_days": summary.get("total_days", 0),
        "total_hours": summary.get("total_hours", 0.0),
        "contracts": contracts,
    }
    if "total_cost" in summary:
        out["total_cost"] = summary["total_cost"]
    return out


async def get_report(db: AsyncIOMotorDatabase, report_id: str, user_id: str) -> dict:
    report_oid = parse_object_id(report_id, "report id")
    user_oid = parse_object_id(user_id, "user id")
    with storage_errors("Loading report"):
        doc = await db["reports"].find_one({"_id": report_oid, "user_id": user_oid})
    if not doc:
        raise NotFound("Report not found")
    return to_summary(doc)


async def list_reports(
    db: AsyncIOMotorDatabase,
    user_id: str,
    customer_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    if page < 1 or limit < 1:
        raise InvalidRequest("page and limit must be at least 1")
    q: dict = {"user_id": parse_object_id(user_id, "user id")}
    if customer_id:
        q["customer_id"] = parse_object_id(customer_id, "customer id")
    with storage_errors("Listing reports"):
        total = await db["reports"].count_documents(q)
        cursor = db["reports"].find(q).sort("generation_date", -1).skip((page - 1) * limit).limit(limit)
        items = []
        async for doc in cursor:
            summary = doc.get("summary", {})
            item = {
                "report_id": str(doc["_id"]),
                "report_type": doc.get("report_type"),
                "customer_id": str(doc.get("customer_id")),
                "customer_name": (doc.get("customer") or {}).get("name", ""),
                "year": doc.get("period", {}).get("year"),
                "month": doc.get("period", {}).get("month"),
                "generation_date": doc.get("generation_date"),
                "total_hours": summary.get("total_hours", 0.0),
            }
            if "total_cost" in summary:
                item["total_cost"] = summary["total_cost"]
            items.append(item)
    return {
        "reports": items,
        "pagination": {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit)},
    }
