from pydantic import BaseModel

from app.schemas.common import ReportType


class GenerateReportIn(BaseModel):
    customer_id: str
    # Range checks happen in the report engine so they surface as invalid_request
    year: int
    month: int
    report_type: ReportType


class AvailableMonthOut(BaseModel):
    year: int
    month: int
