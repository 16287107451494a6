from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel


class DemandForecastResponse(BaseModel):
    forecast_date: date
    predicted_demand: float
    confidence: float
    actual_demand: Optional[float] = None
    algorithm: str
    low_confidence: bool
    calculated_at: datetime

    class Config:
        from_attributes = True


class AlgorithmAccuracy(BaseModel):
    count: int
    zero_actual_count: int
    mape: Optional[float] = None


class ForecastAccuracy(BaseModel):
    window_days: int
    total_forecasts: int
    overall_mape: Optional[float] = None
    by_algorithm: Dict[str, AlgorithmAccuracy] = {}


class ForecastResponse(BaseModel):
    product_id: int
    algorithm: str
    low_confidence: bool
    history_days: int
    forecasts: List[DemandForecastResponse]
    accuracy: ForecastAccuracy
