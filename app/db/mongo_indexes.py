from motor.motor_asyncio import AsyncIOMotorDatabase
from app.db.mongo import get_mongo_db


async def ensure_indexes(db: AsyncIOMotorDatabase | None = None) -> None:
    """Create required MongoDB indexes (idempotent)."""
    if db is None:
        db = get_mongo_db()

    users = db["users"]
    await users.create_index([("email", 1)], unique=True, name="uniq_email")

    customers = db["customers"]
    await customers.create_index([("user_id", 1), ("name", 1)], name="idx_customer_user_name")

    projects = db["projects"]
    await projects.create_index([("user_id", 1), ("customer_id", 1)], name="idx_project_user_customer")

    tasks = db["tasks"]
    await tasks.create_index([("user_id", 1), ("project_id", 1)], name="idx_task_user_project")

    contracts = db["contracts"]
    await contracts.create_index([("user_id", 1), ("customer_id", 1)], name="idx_contract_user_customer")

    time_entries = db["time_entries"]
    await time_entries.create_index([("user_id", 1), ("task_id", 1)], name="idx_te_user_task")
    await time_entries.create_index([("user_id", 1), ("start_time", -1)], name="idx_te_user_start_time")
    # At most one in-progress entry per user; null progress timestamps are not indexed
    await time_entries.create_index(
        [("user_id", 1)],
        unique=True,
        partialFilterExpression={"start_progress_time": {"$type": "date"}},
        name="uniq_te_in_progress_per_user",
    )

    reports = db["reports"]
    await reports.create_index([("user_id", 1), ("customer_id", 1)], name="idx_report_user_customer")
    await reports.create_index([("period.year", 1), ("period.month", 1)], name="idx_report_period")
    await reports.create_index([("report_type", 1)], name="idx_report_type")
