"""
Shared fixtures: an in-memory Motor database per test and a small factory
for the collaborator collections (users, customers, contracts, projects,
tasks) plus time entries.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from main import app
from app.core.security import get_current_user
from app.db.mongo import get_mongo_db
from app.utils.dates import utcnow


class Factory:
    def __init__(self, db):
        self.db = db

    async def user(self, first_name="Ada", last_name="Lovelace", email=None) -> dict:
        doc = {
            "_id": ObjectId(),
            "first_name": first_name,
            "last_name": last_name,
            "email": email or f"{uuid.uuid4().hex[:8]}@example.com",
        }
        await self.db["users"].insert_one(doc)
        return doc

    async def customer(self, user: dict, daily_rate=400.0, currency: Optional[str] = "USD", name="Acme Corp", address="1 Main St") -> dict:
        billing = {"daily_rate": daily_rate}
        if currency is not None:
            billing["currency"] = currency
        doc = {"_id": ObjectId(), "name": name, "address": address, "user_id": user["_id"], "billing_details": billing}
        await self.db["customers"].insert_one(doc)
        return doc

    async def contract(self, customer: dict, daily_rate: float, currency="EUR", name="Contract") -> dict:
        doc = {
            "_id": ObjectId(),
            "customer_id": customer["_id"],
            "user_id": customer["user_id"],
            "name": name,
            "daily_rate": daily_rate,
            "currency": currency,
            "start_date": datetime(2024, 1, 1),
            "end_date": datetime(2024, 12, 31),
        }
        await self.db["contracts"].insert_one(doc)
        return doc

    async def project(self, customer: dict, contract: Optional[dict] = None, name="Website") -> dict:
        doc = {
            "_id": ObjectId(),
            "name": name,
            "customer_id": customer["_id"],
            "user_id": customer["user_id"],
            "contract_id": contract["_id"] if contract else None,
        }
        await self.db["projects"].insert_one(doc)
        return doc

    async def task(self, project: dict, name="Build") -> dict:
        doc = {"_id": ObjectId(), "name": name, "project_id": project["_id"], "user_id": project["user_id"]}
        await self.db["tasks"].insert_one(doc)
        return doc

    async def entry(self, task: dict, start_time: datetime, hours: float = 0.0, in_progress_for: Optional[timedelta] = None, user: Optional[dict] = None) -> dict:
        doc = {
            "_id": ObjectId(),
            "task_id": task["_id"],
            "user_id": user["_id"] if user else task["user_id"],
            "start_time": start_time,
            "total_duration_in_hour": hours,
            "start_progress_time": utcnow() - in_progress_for if in_progress_for else None,
            "created_at": utcnow(),
            "updated_at": utcnow(),
        }
        await self.db["time_entries"].insert_one(doc)
        return doc


@pytest.fixture
def db():
    return AsyncMongoMockClient()[f"timesheets_{uuid.uuid4().hex}"]


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_mongo_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Authenticate API calls as the given user document."""
    def _login(user: dict) -> None:
        app.dependency_overrides[get_current_user] = lambda: {
            "id": str(user["_id"]),
            "first_name": user.get("first_name", ""),
            "last_name": user.get("last_name", ""),
            "email": user.get("email", ""),
        }
    return _login
