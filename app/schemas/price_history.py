from pydantic import BaseModel
from datetime import datetime
from typing import Dict, List, Optional

class PriceHistoryResponse(BaseModel):
    id: int
    product_id: int
    old_price: float
    new_price: float
    change_percentage: float
    reason: str
    rule_id: Optional[int] = None
    user_id: Optional[int] = None
    notes: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True

class PriceHistoryPageMeta(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int

class PriceHistoryStats(BaseModel):
    total_changes: int
    increases: int
    decreases: int
    avg_change_percentage: float
    avg_abs_change_percentage: float
    max_price: float
    min_price: float
    current_price: float
    starting_price: float
    by_reason: Dict[str, int] = {}

class PriceHistoryPageResponse(BaseModel):
    items: List[PriceHistoryResponse]
    meta: PriceHistoryPageMeta
    stats: Optional[PriceHistoryStats] = None
    volatility_score: float
