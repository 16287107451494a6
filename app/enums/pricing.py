from enum import Enum


class RuleScope(str, Enum):
    product = "product"
    category = "category"
    global_ = "global"


class RuleType(str, Enum):
    demand_based = "demand_based"
    competitor_based = "competitor_based"
    time_based = "time_based"
    inventory_based = "inventory_based"


class ChangeReason(str, Enum):
    manual = "manual"
    rule_based = "rule_based"
    demand = "demand"
    competitor = "competitor"
    surge = "surge"


class ForecastAlgorithm(str, Enum):
    auto = "auto"
    moving_average = "moving_average"
    exponential_smoothing = "exponential_smoothing"
    trend_seasonal = "trend_seasonal"
    category_baseline = "category_baseline"


class DemandLevel(str, Enum):
    low = "low"
    normal = "normal"
    high = "high"
    surge = "surge"


class ExperimentStatus(str, Enum):
    draft = "draft"
    running = "running"
    completed = "completed"
    cancelled = "cancelled"


class ExperimentArm(str, Enum):
    control = "control"
    variant = "variant"


class SurgeEventType(str, Enum):
    flash_sale = "flash_sale"
    holiday = "holiday"
    stock_low = "stock_low"
    high_traffic = "high_traffic"


class SurgeStatus(str, Enum):
    active = "active"
    expired = "expired"
    deactivated = "deactivated"


class SalesEventType(str, Enum):
    view = "view"
    purchase = "purchase"
