from typing import List, Optional
from pydantic import BaseModel


# Ingestion responses
class TrackAccepted(BaseModel):
    success: bool = True
    message: str


class TrackRejected(BaseModel):
    success: bool = False
    error: str


# Aggregations
class SummaryResponse(BaseModel):
    period: str
    total_invocations: int
    unique_users: int
    avg_duration_ms: int
    success_rate: str
    error_rate: str


class ToolStatsResponse(BaseModel):
    tool_name: str
    invocations: int
    unique_users: int
    avg_duration_ms: int
    success_rate: str
    error_rate: str


class DailyActiveUsers(BaseModel):
    date: str
    dau: int


class RetentionResponse(BaseModel):
    daily_active_users: List[DailyActiveUsers]
    weekly_active_users: int
    period: str


class ErrorEntry(BaseModel):
    timestamp: str
    tool_name: str
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None


class RecentErrorsResponse(BaseModel):
    errors: List[ErrorEntry]
    count: int
