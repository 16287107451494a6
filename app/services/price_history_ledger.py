"""
Append-only audit log of price changes.

Rows are never updated or deleted. `record_change` only adds the row to the
session; the caller commits it together with the product update.
"""
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.price_history import PriceHistory

MAX_PAGE_SIZE = 200
VOLATILITY_SCALE = 100.0


def record_change(
    db: Session,
    product_id: int,
    old_price: float,
    new_price: float,
    reason: str,
    rule_id: Optional[int] = None,
    user_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> PriceHistory:
    change_percentage = ((new_price - old_price) / old_price) * 100 if old_price > 0 else 0.0

    history = PriceHistory(
        product_id=product_id,
        old_price=old_price,
        new_price=new_price,
        change_percentage=round(change_percentage, 2),
        reason=reason,
        rule_id=rule_id,
        user_id=user_id,
        notes=notes,
        changed_at=_next_changed_at(db, product_id),
    )
    db.add(history)
    return history


def _next_changed_at(db: Session, product_id: int) -> datetime:
    # strictly increasing per product even when the clock repeats a value
    now = datetime.utcnow()
    last = (
        db.query(func.max(PriceHistory.changed_at))
        .filter(PriceHistory.product_id == product_id)
        .scalar()
    )
    if isinstance(last, str):
        last = datetime.fromisoformat(last)
    if last is not None and last >= now:
        return last + timedelta(microseconds=1)
    return now


def _recent(db: Session, product_id: Optional[int], days: Optional[int]):
    query = db.query(PriceHistory)
    if product_id is not None:
        query = query.filter(PriceHistory.product_id == product_id)
    if days is not None:
        query = query.filter(PriceHistory.changed_at >= datetime.utcnow() - timedelta(days=days))
    return query


# --------------------------
# GET PRICE HISTORY
# --------------------------
def get_history(
    db: Session,
    product_id: int,
    days: Optional[int] = None,
    reason: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
) -> Tuple[List[PriceHistory], int]:
    """
    Returns (items, total_count), newest first.
    page is 1-based.
    """
    if page < 1:
        page = 1
    if page_size < 1:
        page_size = 1
    if page_size > MAX_PAGE_SIZE:
        page_size = MAX_PAGE_SIZE

    query = _recent(db, product_id, days)
    if reason:
        query = query.filter(PriceHistory.reason == reason)

    total = query.with_entities(func.count()).scalar() or 0

    offset = (page - 1) * page_size
    items = (
        query
        .order_by(PriceHistory.changed_at.desc(), PriceHistory.id.desc())
        .offset(offset)
        .limit(page_size)
        .all()
    )
    return items, total


def get_product_stats(db: Session, product_id: int, days: int = 30) -> Optional[Dict[str, Any]]:
    changes = (
        _recent(db, product_id, days)
        .order_by(PriceHistory.changed_at.asc(), PriceHistory.id.asc())
        .all()
    )
    if not changes:
        return None

    percentages = [c.change_percentage for c in changes]
    return {
        "total_changes": len(changes),
        "increases": sum(1 for p in percentages if p > 0),
        "decreases": sum(1 for p in percentages if p < 0),
        "avg_change_percentage": round(sum(percentages) / len(percentages), 2),
        "avg_abs_change_percentage": round(sum(abs(p) for p in percentages) / len(percentages), 2),
        "max_price": max(c.new_price for c in changes),
        "min_price": min(c.new_price for c in changes),
        "current_price": changes[-1].new_price,
        "starting_price": changes[0].old_price,
        "by_reason": dict(Counter(c.reason for c in changes)),
    }


def volatility_from_changes(changes: List[PriceHistory], days: int) -> float:
    """
    Score growing with change frequency and with the price range covered
    in the window. Roughly linear for quiet products, logarithmic for busy
    ones, and never saturating.

    For a fixed non-zero range the score is strictly increasing in the
    number of changes.
    """
    if not changes or days <= 0:
        return 0.0

    prices = [c.old_price for c in changes] + [c.new_price for c in changes]
    low, high = min(prices), max(prices)
    mean_price = sum(prices) / len(prices)
    if mean_price <= 0 or high == low:
        return 0.0

    range_pct = (high - low) / mean_price * 100
    changes_per_30_days = len(changes) * 30.0 / days
    return round(VOLATILITY_SCALE * math.log1p(changes_per_30_days * range_pct / VOLATILITY_SCALE), 4)


def get_volatility_score(db: Session, product_id: int, days: int = 30) -> float:
    changes = _recent(db, product_id, days).all()
    return volatility_from_changes(changes, days)


def get_window_changes(db: Session, days: int) -> List[PriceHistory]:
    return (
        _recent(db, None, days)
        .order_by(PriceHistory.product_id.asc(), PriceHistory.changed_at.asc())
        .all()
    )
