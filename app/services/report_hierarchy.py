"""Contract -> project -> task skeleton for a customer's report.

Projects are grouped by the contract they reference. Projects without a
contract share a single group whose key is ``None`` and which is displayed as
"No Contract". Every bucket carries a running ``total_hours`` and, for invoice
reports only, a running ``total_cost``; for timesheets ``total_cost`` stays
``None`` at every level and is never serialized.
"""

from __future__ import annotations

from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.services.rates import BillingRate, resolve_daily_rate


NO_CONTRACT_NAME = "No Contract"


class TaskBucket:
    def __init__(self, task: dict, with_cost: bool) -> None:
        self.task_id: ObjectId = task["_id"]
        self.name: str = task.get("name", "")
        self.total_hours = 0.0
        self.total_cost: Optional[float] = 0.0 if with_cost else None
        self.entry_count = 0

    def add(self, hours: float, cost: Optional[float]) -> None:
        self.entry_count += 1
        self.total_hours += hours
        if self.total_cost is not None and cost is not None:
            self.total_cost += cost


class ProjectBucket:
    def __init__(self, project: dict, with_cost: bool) -> None:
        self.project_id: ObjectId = project["_id"]
        self.name: str = project.get("name", "")
        self.total_hours = 0.0
        self.total_cost: Optional[float] = 0.0 if with_cost else None
        self.tasks: dict[ObjectId, TaskBucket] = {}

    def add(self, hours: float, cost: Optional[float]) -> None:
        self.total_hours += hours
        if self.total_cost is not None and cost is not None:
            self.total_cost += cost


class ContractGroup:
    def __init__(self, contract_id: Optional[ObjectId], name: str, rate: BillingRate, with_cost: bool) -> None:
        self.contract_id = contract_id
        self.name = name
        self.rate = rate
        self.total_hours = 0.0
        self.total_cost: Optional[float] = 0.0 if with_cost else None
        self.projects: dict[ObjectId, ProjectBucket] = {}

    def add(self, hours: float, cost: Optional[float]) -> None:
        self.total_hours += hours
        if self.total_cost is not None and cost is not None:
            self.total_cost += cost


class ReportHierarchy:
    def __init__(self, with_cost: bool) -> None:
        self.with_cost = with_cost
        self.groups: dict[Optional[ObjectId], ContractGroup] = {}
        # task id -> (group key, project id)
        self.task_index: dict[ObjectId, tuple[Optional[ObjectId], ObjectId]] = {}

    @property
    def task_ids(self) -> list[ObjectId]:
        return list(self.task_index)

    def locate(self, task_id: ObjectId) -> tuple[ContractGroup, ProjectBucket, TaskBucket]:
        group_key, project_id = self.task_index[task_id]
        group = self.groups[group_key]
        project = group.projects[project_id]
        return group, project, project.tasks[task_id]

    def prune(self) -> None:
        """Drop tasks without entries, then emptied projects, then emptied groups."""
        for group_key in list(self.groups):
            group = self.groups[group_key]
            for project_id in list(group.projects):
                project = group.projects[project_id]
                project.tasks = {tid: t for tid, t in project.tasks.items() if t.entry_count > 0}
                if not project.tasks:
                    del group.projects[project_id]
            if not group.projects:
                del self.groups[group_key]


async def build_hierarchy(
    db: AsyncIOMotorDatabase,
    customer: dict,
    user_oid: ObjectId,
    with_cost: bool,
) -> ReportHierarchy:
    hierarchy = ReportHierarchy(with_cost)
    projects = [p async for p in db["projects"].find({"customer_id": customer["_id"], "user_id": user_oid}).sort("_id", 1)]
    if not projects:
        return hierarchy

    contract_ids = list({p["contract_id"] for p in projects if p.get("contract_id")})
    contracts: dict[ObjectId, dict] = {}
    if contract_ids:
        async for c in db["contracts"].find({"_id": {"$in": contract_ids}}):
            contracts[c["_id"]] = c

    customer_billing = customer.get("billing_details") or {}
    project_groups: dict[ObjectId, Optional[ObjectId]] = {}
    for project in projects:
        group_key = project.get("contract_id") or None
        if group_key not in hierarchy.groups:
            if group_key is None:
                name = NO_CONTRACT_NAME
                rate = resolve_daily_rate(None, customer_billing)
            else:
                contract = contracts.get(group_key)
                name = (contract or {}).get("name", "")
                rate = resolve_daily_rate(contract, customer_billing)
            hierarchy.groups[group_key] = ContractGroup(group_key, name, rate, with_cost)
        hierarchy.groups[group_key].projects[project["_id"]] = ProjectBucket(project, with_cost)
        project_groups[project["_id"]] = group_key

    cursor = db["tasks"].find({"project_id": {"$in": list(project_groups)}, "user_id": user_oid}).sort("_id", 1)
    async for task in cursor:
        group_key = project_groups[task["project_id"]]
        project = hierarchy.groups[group_key].projects[task["project_id"]]
        project.tasks[task["_id"]] = TaskBucket(task, with_cost)
        hierarchy.task_index[task["_id"]] = (group_key, task["project_id"])
    return hierarchy
