from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from app.schemas.common import PaginationOut


class TimeEntryIn(BaseModel):
    task_id: str
    start_time: datetime
    total_duration_in_hour: float = Field(default=0.0, ge=0)


class TimeEntryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: Optional[str] = None
    start_time: Optional[datetime] = None
    total_duration_in_hour: Optional[float] = Field(default=None, ge=0)
    # Accepted only so that direct edits can be rejected with a clear message
    start_progress_time: Optional[datetime] = None


class TimeEntryOut(BaseModel):
    id: str
    task_id: str
    user_id: str
    start_time: datetime
    total_duration_in_hour: float
    start_progress_time: Optional[datetime] = None
    in_progress: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TimeEntryListOut(BaseModel):
    entries: list[TimeEntryOut]
    pagination: PaginationOut
