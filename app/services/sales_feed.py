"""
Read side of the storefront sales/view feed.

Forecasting, surge heuristics and the rule context all pull from here.
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.enums.pricing import SalesEventType
from app.models.product import Product
from app.models.sales_event import SalesEvent


def record_event(
    db: Session,
    product_id: int,
    event_type: SalesEventType,
    quantity: int = 1,
    amount: float = 0.0,
    session_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> SalesEvent:
    event = SalesEvent(
        product_id=product_id,
        event_type=SalesEventType(event_type).value,
        quantity=quantity,
        amount=amount,
        session_id=session_id,
        occurred_at=occurred_at or datetime.utcnow(),
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def daily_sales(
    db: Session,
    product_id: int,
    since: date,
    until: date,
) -> Dict[date, float]:
    """Purchased quantity per calendar day in [since, until]."""
    start = datetime.combine(since, datetime.min.time())
    end = datetime.combine(until + timedelta(days=1), datetime.min.time())

    rows = (
        db.query(
            func.date(SalesEvent.occurred_at).label("day"),
            func.sum(SalesEvent.quantity).label("units"),
        )
        .filter(
            SalesEvent.product_id == product_id,
            SalesEvent.event_type == SalesEventType.purchase.value,
            SalesEvent.occurred_at >= start,
            SalesEvent.occurred_at < end,
        )
        .group_by(func.date(SalesEvent.occurred_at))
        .all()
    )

    result: Dict[date, float] = {}
    for row in rows:
        day = row.day
        if isinstance(day, str):
            day = date.fromisoformat(day)
        elif isinstance(day, datetime):
            day = day.date()
        result[day] = float(row.units or 0)
    return result


def units_sold(db: Session, product_id: int, since: datetime, until: Optional[datetime] = None) -> float:
    query = db.query(func.coalesce(func.sum(SalesEvent.quantity), 0)).filter(
        SalesEvent.product_id == product_id,
        SalesEvent.event_type == SalesEventType.purchase.value,
        SalesEvent.occurred_at >= since,
    )
    if until is not None:
        query = query.filter(SalesEvent.occurred_at < until)
    return float(query.scalar() or 0)


def view_count(db: Session, product_id: int, since: datetime, until: Optional[datetime] = None) -> int:
    query = db.query(func.count(SalesEvent.id)).filter(
        SalesEvent.product_id == product_id,
        SalesEvent.event_type == SalesEventType.view.value,
        SalesEvent.occurred_at >= since,
    )
    if until is not None:
        query = query.filter(SalesEvent.occurred_at < until)
    return int(query.scalar() or 0)


def hourly_view_counts(db: Session, product_id: int, start: datetime, hours: int) -> List[int]:
    """View counts for `hours` consecutive one-hour buckets beginning at `start`."""
    end = start + timedelta(hours=hours)
    timestamps = (
        db.query(SalesEvent.occurred_at)
        .filter(
            SalesEvent.product_id == product_id,
            SalesEvent.event_type == SalesEventType.view.value,
            SalesEvent.occurred_at >= start,
            SalesEvent.occurred_at < end,
        )
        .all()
    )
    buckets = [0] * hours
    for (ts,) in timestamps:
        idx = int((ts - start).total_seconds() // 3600)
        if 0 <= idx < hours:
            buckets[idx] += 1
    return buckets


def first_sale_date(db: Session, product_id: int, since: date) -> Optional[date]:
    first = (
        db.query(func.min(SalesEvent.occurred_at))
        .filter(
            SalesEvent.product_id == product_id,
            SalesEvent.event_type == SalesEventType.purchase.value,
            SalesEvent.occurred_at >= datetime.combine(since, datetime.min.time()),
        )
        .scalar()
    )
    if first is None:
        return None
    if isinstance(first, str):
        first = datetime.fromisoformat(first)
    return first.date()


def category_units_sold(db: Session, category_id: Optional[int], since: datetime, until: datetime) -> float:
    query = (
        db.query(func.coalesce(func.sum(SalesEvent.quantity), 0))
        .join(Product, Product.id == SalesEvent.product_id)
        .filter(
            SalesEvent.event_type == SalesEventType.purchase.value,
            SalesEvent.occurred_at >= since,
            SalesEvent.occurred_at < until,
        )
    )
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    return float(query.scalar() or 0)
