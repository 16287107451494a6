from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.enums.pricing import SurgeEventType
from app.schemas.pricing import PriceChangeResponse


class SurgeActivateRequest(BaseModel):
    product_id: int
    event_type: SurgeEventType
    multiplier: float = Field(ge=1.0, le=3.0)
    duration_minutes: int = Field(default=60, ge=1, le=1440)


class SurgeEventResponse(BaseModel):
    id: int
    product_id: int
    event_type: str
    multiplier: float
    base_price: float
    status: str
    is_active: bool
    starts_at: datetime
    ends_at: datetime
    ended_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SurgeChangeResponse(BaseModel):
    event: SurgeEventResponse
    price_change: PriceChangeResponse


class SurgeStatusResponse(BaseModel):
    product_id: int
    active: bool
    current_price: float
    event: Optional[SurgeEventResponse] = None
    remaining_minutes: Optional[float] = None


class SurgeProposal(BaseModel):
    event_type: str
    multiplier: float
    reason: str


class SurgeCheckResponse(BaseModel):
    product_id: int
    proposal: Optional[SurgeProposal] = None
