from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from app.enums.pricing import RuleScope, RuleType


class RuleCondition(BaseModel):
    field: str
    operator: str = "="
    value: Any = None


class PriceRuleBase(BaseModel):
    name: str
    scope: RuleScope = RuleScope.global_.value
    product_id: Optional[int] = None
    category_id: Optional[int] = None
    rule_type: RuleType
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    target_margin: Optional[float] = Field(default=None, ge=0, lt=1)
    conditions: List[RuleCondition] = []
    adjustments: Dict[str, Any] = {}
    priority: int = Field(default=50, ge=1, le=100)
    is_active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class PriceRuleCreate(PriceRuleBase):
    @model_validator(mode="after")
    def check_scope_and_bounds(self):
        if self.scope == RuleScope.product and self.product_id is None:
            raise ValueError("product scope requires product_id")
        if self.scope == RuleScope.category and self.category_id is None:
            raise ValueError("category scope requires category_id")
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must not exceed max_price")
        return self


class PriceRuleUpdate(BaseModel):
    name: Optional[str] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    target_margin: Optional[float] = Field(default=None, ge=0, lt=1)
    conditions: Optional[List[RuleCondition]] = None
    adjustments: Optional[Dict[str, Any]] = None
    priority: Optional[int] = Field(default=None, ge=1, le=100)
    is_active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class PriceRuleResponse(PriceRuleBase):
    id: int
    conditions: List[Dict[str, Any]] = []
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PriceRuleListResponse(BaseModel):
    items: List[PriceRuleResponse]
    total: int
    page: int
    page_size: int
