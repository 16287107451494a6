from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CompetitorPriceCreate(BaseModel):
    competitor_name: str
    competitor_url: Optional[str] = None
    price: float = Field(gt=0)
    in_stock: bool = True
    quality_score: float = Field(default=0.0, ge=0, le=1)
    scraped_at: Optional[datetime] = None


class CompetitorPriceResponse(BaseModel):
    id: int
    product_id: int
    competitor_name: str
    competitor_url: Optional[str] = None
    price: float
    in_stock: bool
    quality_score: float
    scraped_at: datetime

    class Config:
        from_attributes = True


class CompetitivePosition(BaseModel):
    total_competitors: int
    our_price: float
    percentile: float
    cheaper_than: int
    more_expensive_than: int
    avg_competitor_price: float
    lowest_competitor_price: float
    highest_competitor_price: float
    price_position: str


class DailyCompetitorTrend(BaseModel):
    avg_competitor_price: float
    min_competitor_price: float
    max_competitor_price: float
    competitor_count: int


class CompetitorOverviewResponse(BaseModel):
    product_id: int
    prices: List[CompetitorPriceResponse]
    position: Optional[CompetitivePosition] = None
    trends: Dict[str, DailyCompetitorTrend] = {}
