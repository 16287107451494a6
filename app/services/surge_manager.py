"""
Time-boxed surge multipliers.

State machine per event: active -> expired | deactivated (both terminal).
Expiry is applied lazily whenever a surge is read, and periodically by
`sweep_expired` from the scheduler. An activation whose price write
fails is rolled back: the new event is closed and the events it
superseded are reopened.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import numpy as np
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import SurgeNotFound, SurgeValidationError
from app.enums.pricing import ChangeReason, SurgeEventType, SurgeStatus
from app.models.surge_pricing_event import SurgePricingEvent
from app.services import sales_feed
from app.services.pricing_service import orchestrator
from app.services.product_service import get_product_or_404, get_reorder_point, get_stock_level
from app.services.tasks import BatchResult, CancellationToken, is_cancelled

logger = logging.getLogger(__name__)

MIN_MULTIPLIER = 1.0
MAX_MULTIPLIER = 3.0
MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 1440
TRAFFIC_BASELINE_HOURS = 7 * 24

STOCK_LOW_MULTIPLIER = 1.2
HIGH_TRAFFIC_MULTIPLIER = 1.3


def _active_events(db: Session, product_id: Optional[int] = None):
    query = db.query(SurgePricingEvent).filter(SurgePricingEvent.is_active.is_(True))
    if product_id is not None:
        query = query.filter(SurgePricingEvent.product_id == product_id)
    return query


def _close_event(db: Session, event: SurgePricingEvent, status: SurgeStatus, now: datetime) -> None:
    event.status = status.value
    event.is_active = False
    event.ended_at = now
    db.commit()


def _reopen_event(db: Session, event: SurgePricingEvent) -> None:
    # a reopened event already past ends_at is expired by the next read
    event.status = SurgeStatus.active.value
    event.is_active = True
    event.ended_at = None
    db.commit()


def _revert_price(db: Session, event: SurgePricingEvent, note: str, user_id: Optional[int] = None) -> Dict[str, Any]:
    recommendation = orchestrator.calculate_optimal_price(
        db, event.product_id, include_surge=False, reference_price=event.base_price
    )
    return orchestrator.apply_price_change(
        db,
        event.product_id,
        recommendation["recommended_price"],
        ChangeReason.manual,
        user_id=user_id,
        notes=note,
    )


def _expire(db: Session, event: SurgePricingEvent, now: datetime) -> None:
    logger.info("Surge %s for product %s expired at %s", event.id, event.product_id, event.ends_at)
    _close_event(db, event, SurgeStatus.expired, now)
    _revert_price(db, event, "surge expired")


# ---------- ACTIVATE ----------

def activate(
    db: Session,
    product_id: int,
    event_type: SurgeEventType,
    multiplier: float,
    duration_minutes: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    if duration_minutes is None:
        duration_minutes = settings.SURGE_DEFAULT_DURATION_MINUTES
    if not MIN_MULTIPLIER <= multiplier <= MAX_MULTIPLIER:
        raise SurgeValidationError(
            f"Multiplier must be between {MIN_MULTIPLIER} and {MAX_MULTIPLIER}",
            {"multiplier": multiplier},
        )
    if not MIN_DURATION_MINUTES <= duration_minutes <= MAX_DURATION_MINUTES:
        raise SurgeValidationError(
            f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes",
            {"duration_minutes": duration_minutes},
        )

    get_product_or_404(db, product_id)
    now = datetime.utcnow()

    previous = _active_events(db, product_id).all()
    reference_price = None
    for event in previous:
        # superseding keeps the original pre-surge base
        reference_price = event.base_price
        _close_event(db, event, SurgeStatus.deactivated, now)
        logger.info("Surge %s for product %s superseded", event.id, product_id)

    base = orchestrator.calculate_optimal_price(
        db, product_id, include_surge=False, reference_price=reference_price
    )["recommended_price"]

    event = SurgePricingEvent(
        product_id=product_id,
        event_type=SurgeEventType(event_type).value,
        multiplier=multiplier,
        base_price=base,
        status=SurgeStatus.active.value,
        is_active=True,
        starts_at=now,
        ends_at=now + timedelta(minutes=duration_minutes),
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    try:
        change = orchestrator.apply_price_change(
            db,
            product_id,
            round(base * multiplier, 2),
            ChangeReason.surge,
            user_id=user_id,
            notes=f"{event.event_type} surge x{multiplier}",
        )
    except Exception:
        db.rollback()
        logger.error("Surge %s for product %s not applied; restoring previous state", event.id, product_id)
        _close_event(db, event, SurgeStatus.deactivated, datetime.utcnow())
        for prior in previous:
            _reopen_event(db, prior)
        raise
    logger.info(
        "Surge %s activated for product %s: %s x%s until %s",
        event.id, product_id, base, multiplier, event.ends_at,
    )
    return {"event": event, "price_change": change}


# ---------- READ ----------

def get_active_surge(db: Session, product_id: int, now: Optional[datetime] = None) -> Optional[SurgePricingEvent]:
    now = now or datetime.utcnow()
    event = (
        _active_events(db, product_id)
        .order_by(SurgePricingEvent.starts_at.desc(), SurgePricingEvent.id.desc())
        .first()
    )
    if event is None:
        return None
    if event.ends_at <= now:
        _expire(db, event, now)
        return None
    return event


def get_surge_summary(db: Session, product_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    product = get_product_or_404(db, product_id)
    event = get_active_surge(db, product_id, now)
    if event is None:
        return {
            "product_id": product_id,
            "active": False,
            "current_price": float(product.current_price),
            "event": None,
            "remaining_minutes": None,
        }
    db.refresh(product)
    return {
        "product_id": product_id,
        "active": True,
        "current_price": float(product.current_price),
        "event": event,
        "remaining_minutes": round((event.ends_at - now).total_seconds() / 60, 1),
    }


# ---------- DEACTIVATE ----------

def deactivate(db: Session, product_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
    event = get_active_surge(db, product_id)
    if event is None:
        raise SurgeNotFound(product_id)

    _close_event(db, event, SurgeStatus.deactivated, datetime.utcnow())
    change = _revert_price(db, event, "surge deactivated", user_id=user_id)
    logger.info("Surge %s for product %s deactivated", event.id, product_id)
    return {"event": event, "price_change": change}


# ---------- HEURISTICS ----------

def check_conditions(db: Session, product_id: int, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Propose a surge when stock is critically low or traffic spikes. Never activates."""
    now = now or datetime.utcnow()
    product = get_product_or_404(db, product_id)

    stock = get_stock_level(product)
    reorder_point = get_reorder_point(product)
    if reorder_point > 0 and stock < settings.SURGE_STOCK_LOW_FRACTION * reorder_point:
        return {
            "event_type": SurgeEventType.stock_low.value,
            "multiplier": STOCK_LOW_MULTIPLIER,
            "reason": f"Stock {stock} below {settings.SURGE_STOCK_LOW_FRACTION:g} x reorder point {reorder_point}",
        }

    last_hour_start = now - timedelta(hours=1)
    baseline = np.array(
        sales_feed.hourly_view_counts(
            db, product_id, last_hour_start - timedelta(hours=TRAFFIC_BASELINE_HOURS), TRAFFIC_BASELINE_HOURS
        ),
        dtype=float,
    )
    last_hour = sales_feed.view_count(db, product_id, last_hour_start, now)

    mean = float(baseline.mean())
    std = float(baseline.std())
    # a flat week gives no baseline to compare against
    z_score = (last_hour - mean) / std if std > 0 else 0.0

    if z_score > settings.SURGE_TRAFFIC_ZSCORE:
        return {
            "event_type": SurgeEventType.high_traffic.value,
            "multiplier": HIGH_TRAFFIC_MULTIPLIER,
            "reason": f"{last_hour} views in the last hour vs hourly mean {round(mean, 2)}",
        }
    return None


# ---------- SWEEP ----------

def sweep_expired(
    db: Session,
    now: Optional[datetime] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> BatchResult:
    now = now or datetime.utcnow()
    expired = (
        _active_events(db)
        .filter(SurgePricingEvent.ends_at <= now)
        .order_by(SurgePricingEvent.id.asc())
        .all()
    )
    result = BatchResult(total=len(expired))
    for event in expired:
        if is_cancelled(cancel_token):
            result.cancelled = True
            break
        try:
            _expire(db, event, now)
            result.processed += 1
        except Exception as e:
            db.rollback()
            result.failed += 1
            result.errors.append({"product_id": event.product_id, "error": str(e)})
            logger.exception("Failed to expire surge %s", event.id)
    return result


def count_active(db: Session) -> int:
    return _active_events(db).count()
