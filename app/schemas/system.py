from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime


class HealthCheckResponse(BaseModel):
    status: str
    now: datetime
    uptime_seconds: float
    db_ok: bool
    extra: Optional[Dict[str, Any]] = None


class SystemMetricsResponse(BaseModel):
    uptime_seconds: float
    now: datetime

    # middleware counters
    requests_count: int
    error_count: int
    avg_response_ms: Optional[float] = None

    # pricing state
    active_rules: int
    running_experiments: int
    active_surges: int
    price_changes_today: int
    tracked_products: int
