from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.enums.pricing import ChangeReason


class PriceBounds(BaseModel):
    min_price: Optional[float] = None
    max_price: Optional[float] = None


class PriceRecommendation(BaseModel):
    product_id: int
    recommended_price: float
    current_price: float
    change_amount: float
    change_percentage: float
    rationale: List[str] = []
    bounds: PriceBounds
    applied_rule_ids: List[int] = []
    low_confidence: bool
    surge_active: bool


class ApplyPriceRequest(BaseModel):
    product_id: int
    new_price: float = Field(ge=0)
    reason: ChangeReason = ChangeReason.manual
    rule_id: Optional[int] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class PriceChangeResponse(BaseModel):
    product_id: int
    old_price: float
    new_price: float
    requested_price: float
    clamped: bool
    reason: str
    version: int
    history_id: int
    changed_at: datetime


class BulkOptimizeRequest(BaseModel):
    category_id: Optional[int] = None
    dry_run: bool = True


class ProposedChange(BaseModel):
    product_id: int
    current_price: float
    recommended_price: float
    change_percentage: float
    applied: bool


class BulkOptimizeResponse(BaseModel):
    dry_run: bool
    category_id: Optional[int] = None
    total: int
    evaluated: int
    applied: int
    failed: int
    cancelled: bool
    changes: List[ProposedChange] = []
    errors: List[Dict[str, Any]] = []
