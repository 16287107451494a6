from typing import Dict, List, Optional
from pydantic import BaseModel


# ---------- Volatility ----------

class ProductVolatility(BaseModel):
    product_id: int
    volatility_score: float
    change_count: int


# ---------- Pricing analytics ----------

class PriceChangeSummary(BaseModel):
    total_changes: int
    increases: int
    decreases: int
    unchanged: int
    changes_per_day: float
    avg_abs_change_percentage: Optional[float] = None
    by_reason: Dict[str, int] = {}


class ExperimentSummary(BaseModel):
    completed: int
    with_winner: int
    win_rate: Optional[float] = None
    variant_wins: int


class PricingAnalyticsResponse(BaseModel):
    period_days: int
    changes: PriceChangeSummary
    average_volatility: float
    top_volatile_products: List[ProductVolatility]
    experiments: ExperimentSummary
    active_rules: int
    running_experiments: int
    active_surges: int
