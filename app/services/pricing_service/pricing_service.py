import logging
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import RuleNotFound
from app.models.price_rule import PriceRule
from app.schemas.pricing_rule import PriceRuleCreate, PriceRuleUpdate

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def create_price_rule(db: Session, rule: PriceRuleCreate) -> PriceRule:
    db_rule = PriceRule(**rule.dict())
    db.add(db_rule)
    db.commit()
    db.refresh(db_rule)
    logger.info("Created price rule %s (%s, scope=%s)", db_rule.id, db_rule.rule_type, db_rule.scope)
    return db_rule


def get_price_rules(
    db: Session,
    product_id: Optional[int] = None,
    category_id: Optional[int] = None,
    rule_type: Optional[str] = None,
    active_only: bool = False,
    page: int = 1,
    page_size: int = 50,
) -> Tuple[List[PriceRule], int]:
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    query = db.query(PriceRule)
    if product_id is not None:
        query = query.filter(PriceRule.product_id == product_id)
    if category_id is not None:
        query = query.filter(PriceRule.category_id == category_id)
    if rule_type:
        query = query.filter(PriceRule.rule_type == rule_type)
    if active_only:
        query = query.filter(PriceRule.is_active.is_(True))

    total = query.with_entities(func.count()).scalar() or 0
    items = (
        query.order_by(PriceRule.priority.asc(), PriceRule.created_at.desc(), PriceRule.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def get_price_rule(db: Session, rule_id: int) -> PriceRule:
    db_rule = db.query(PriceRule).filter(PriceRule.id == rule_id).first()
    if not db_rule:
        raise RuleNotFound(rule_id)
    return db_rule


def update_price_rule(db: Session, rule_id: int, rule_update: PriceRuleUpdate) -> PriceRule:
    db_rule = get_price_rule(db, rule_id)

    for key, value in rule_update.dict(exclude_unset=True).items():
        setattr(db_rule, key, value)

    db.commit()
    db.refresh(db_rule)
    return db_rule


def delete_price_rule(db: Session, rule_id: int) -> None:
    db_rule = get_price_rule(db, rule_id)
    db.delete(db_rule)
    db.commit()
    logger.info("Deleted price rule %s", rule_id)
