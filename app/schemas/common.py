from enum import Enum

from pydantic import BaseModel


class ReportType(str, Enum):
    timesheet = "timesheet"
    invoice = "invoice"


class PaginationOut(BaseModel):
    total: int
    page: int
    limit: int
    pages: int
