from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.database.connection import get_db
from app.enums.pricing import RuleType
from app.schemas.pricing_rule import (
    PriceRuleCreate,
    PriceRuleListResponse,
    PriceRuleResponse,
    PriceRuleUpdate,
)
from app.services.pricing_service.pricing_service import (
    create_price_rule, get_price_rules, update_price_rule, delete_price_rule
)
from app.dependencies.auth import require_auth, require_admin


router = APIRouter(prefix="/api/pricing/rules", tags=["Pricing Rules"])

@router.get("", response_model=PriceRuleListResponse, dependencies=[Depends(require_auth)])
def list_rules(
    product_id: Optional[int] = None,
    category_id: Optional[int] = None,
    type: Optional[RuleType] = None,
    active_only: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    items, total = get_price_rules(
        db,
        product_id=product_id,
        category_id=category_id,
        rule_type=type.value if type else None,
        active_only=active_only,
        page=page,
        page_size=page_size,
    )
    return PriceRuleListResponse(items=items, total=total, page=page, page_size=page_size)

@router.post("", response_model=PriceRuleResponse, status_code=201, dependencies=[Depends(require_admin)])
def create_rule(rule: PriceRuleCreate, db: Session = Depends(get_db)):
    return create_price_rule(db, rule)

@router.put("/{rule_id}", response_model=PriceRuleResponse, dependencies=[Depends(require_admin)])
def update_rule(rule_id: int, rule: PriceRuleUpdate, db: Session = Depends(get_db)):
    return update_price_rule(db, rule_id, rule)

@router.delete("/{rule_id}", status_code=204, dependencies=[Depends(require_admin)])
def delete_rule(rule_id: int, db: Session = Depends(get_db)):
    delete_price_rule(db, rule_id)
