from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ExperimentCreate(BaseModel):
    product_id: int
    name: str
    variant_price: float = Field(gt=0)
    control_price: Optional[float] = Field(default=None, gt=0)


class ExperimentResponse(BaseModel):
    id: int
    product_id: int
    name: str
    control_price: float
    variant_price: float
    status: str
    control_impressions: int
    control_conversions: int
    control_revenue: float
    variant_impressions: int
    variant_conversions: int
    variant_revenue: float
    winner: Optional[str] = None
    p_value: Optional[float] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionEvent(BaseModel):
    session_id: str = Field(min_length=1)


class ConversionEvent(SessionEvent):
    revenue: Optional[float] = Field(default=None, ge=0)


class ArmAssignment(BaseModel):
    experiment_id: int
    session_id: str
    arm: str
    price: float
    status: str


class RecordedEvent(BaseModel):
    experiment_id: int
    arm: str
    revenue: Optional[float] = None


class ArmResult(BaseModel):
    price: float
    impressions: int
    conversions: int
    revenue: float
    conversion_rate: float
    revenue_per_impression: float


class ExperimentResults(BaseModel):
    experiment_id: int
    product_id: int
    name: str
    status: str
    control: ArmResult
    variant: ArmResult
    z_score: Optional[float] = None
    p_value: Optional[float] = None
    significant: bool
    sample_size_met: bool
    winner: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    price_change: Optional[dict] = None
