"""
Price recommendation and price mutation.

Every write to Product.current_price goes through `apply_price_change`,
which records the PriceHistory row and performs the compare-and-swap in
the same transaction.
"""
import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ConflictError, InvalidPriceError
from app.enums.pricing import ChangeReason, ExperimentStatus
from app.models.price_experiment import PriceExperiment
from app.models.product import Product
from app.models.surge_pricing_event import SurgePricingEvent
from app.services import competitor_tracker, demand_forecaster, sales_feed
from app.services.price_history_ledger import record_change
from app.services.pricing_service.rule_engine import active_bounds, clamp, evaluate_product
from app.services.product_service import (
    compare_and_swap_price,
    get_product_or_404,
    get_products_by_ids,
    get_reorder_point,
    get_stock_level,
    list_product_ids,
)
from app.services.tasks import BatchResult, CancellationToken, chunked, is_cancelled

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64
_PRODUCT_LOCKS: List[Lock] = [Lock() for _ in range(LOCK_STRIPES)]


def _product_lock(product_id: int) -> Lock:
    # fixed pool: products sharing a stripe just serialize their writes
    return _PRODUCT_LOCKS[product_id % LOCK_STRIPES]


def _open_surge(db: Session, product_id: int) -> Optional[SurgePricingEvent]:
    # may already be past ends_at when the sweep has not run yet
    return (
        db.query(SurgePricingEvent)
        .filter(
            SurgePricingEvent.product_id == product_id,
            SurgePricingEvent.is_active.is_(True),
        )
        .order_by(SurgePricingEvent.starts_at.desc(), SurgePricingEvent.id.desc())
        .first()
    )


def _running_experiment(db: Session, product_id: int) -> Optional[PriceExperiment]:
    return (
        db.query(PriceExperiment)
        .filter(
            PriceExperiment.product_id == product_id,
            PriceExperiment.status == ExperimentStatus.running.value,
        )
        .first()
    )


# ---------- CONTEXT ----------

def build_pricing_context(
    db: Session,
    product: Product,
    signal: Optional[demand_forecaster.DemandSignal] = None,
    competitor_prices: Optional[List[float]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    today_start = datetime.combine(now.date(), datetime.min.time())
    week_start = today_start - timedelta(days=now.weekday())

    price = float(product.current_price)
    cost = float(product.cost or 0)
    competitor_avg = (
        round(sum(competitor_prices) / len(competitor_prices), 2) if competitor_prices else None
    )

    return {
        "current_price": price,
        "cost": cost,
        "margin": round((price - cost) / price, 4) if price > 0 else None,
        "stock_level": get_stock_level(product),
        "reorder_point": get_reorder_point(product),
        "views_today": sales_feed.view_count(db, product.id, today_start),
        "views_this_week": sales_feed.view_count(db, product.id, week_start),
        "sales_today": sales_feed.units_sold(db, product.id, today_start),
        "sales_this_week": sales_feed.units_sold(db, product.id, week_start),
        "hour": now.hour,
        "day_of_week": now.weekday(),
        "is_weekend": now.weekday() >= 5,
        "demand_level": signal.level.value if signal and signal.level else None,
        "competitor_avg_price": competitor_avg,
    }


# ---------- RECOMMEND ----------

def calculate_optimal_price(
    db: Session,
    product_id: int,
    include_surge: bool = True,
    reference_price: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    product = get_product_or_404(db, product_id)
    current_price = float(product.current_price)

    surge = _open_surge(db, product_id)
    if reference_price is None and surge is not None:
        # current_price still carries the multiplier, even after ends_at
        reference_price = float(surge.base_price)
    if surge is not None and surge.ends_at <= now:
        surge = None

    signal = demand_forecaster.demand_signal(db, product, now.date())
    competitor_prices = competitor_tracker.signal_prices(db, product_id)
    context = build_pricing_context(db, product, signal, competitor_prices, now)

    evaluation = evaluate_product(db, product, context, now, reference_price)
    rationale: List[str] = list(evaluation.rationale) + list(evaluation.warnings)
    price = evaluation.candidate_price
    if not evaluation.applied_rule_ids:
        rationale.append("No applicable rule proposed a price; starting from current price")

    if signal.low_confidence:
        rationale.append("Demand forecast is low-confidence; demand adjustment skipped")
    elif signal.ratio is not None:
        bias = (signal.ratio - 1.0) * settings.DEMAND_SENSITIVITY
        bias = max(-settings.DEMAND_MAX_ADJUSTMENT, min(settings.DEMAND_MAX_ADJUSTMENT, bias))
        if bias:
            price = price * (1 + bias)
            rationale.append(
                f"Demand {signal.level.value} (ratio {signal.ratio}); adjusted {round(bias * 100, 2)}%"
            )

    if evaluation.target_percentile is not None and competitor_prices:
        target = competitor_tracker.price_at_percentile(competitor_prices, evaluation.target_percentile)
        price = price + (target - price) * settings.COMPETITOR_NUDGE_WEIGHT
        rationale.append(
            f"Moved toward competitor P{evaluation.target_percentile:g} price {target}"
        )

    price = clamp(price, evaluation.bounds)

    surge_active = False
    if include_surge and surge is not None:
        price = price * float(surge.multiplier)
        max_price = evaluation.bounds[1]
        if max_price is not None and price > max_price:
            price = max_price
        surge_active = True
        rationale.append(f"Surge {surge.event_type} x{surge.multiplier} active until {surge.ends_at}")

    experiment = _running_experiment(db, product_id)
    if experiment is not None:
        rationale.append(
            f"Experiment '{experiment.name}' running (control {experiment.control_price}, "
            f"variant {experiment.variant_price})"
        )

    recommended = round(max(price, 0.0), 2)
    change_amount = round(recommended - current_price, 2)
    return {
        "product_id": product_id,
        "recommended_price": recommended,
        "current_price": current_price,
        "change_amount": change_amount,
        "change_percentage": round(change_amount / current_price * 100, 2) if current_price > 0 else 0.0,
        "rationale": rationale,
        "bounds": {"min_price": evaluation.bounds[0], "max_price": evaluation.bounds[1]},
        "applied_rule_ids": evaluation.applied_rule_ids,
        "low_confidence": signal.low_confidence,
        "surge_active": surge_active,
    }


# ---------- APPLY ----------

def apply_price_change(
    db: Session,
    product_id: int,
    new_price: float,
    reason: ChangeReason = ChangeReason.manual,
    rule_id: Optional[int] = None,
    user_id: Optional[int] = None,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Clamp, audit and write a price in one transaction.

    Without `expected_version` a lost compare-and-swap is retried against
    the freshly committed row up to APPLY_MAX_RETRIES times; with it the
    caller's version is authoritative and a mismatch raises ConflictError.
    """
    if new_price is None or new_price < 0:
        raise InvalidPriceError("Price must be a non-negative number", {"new_price": new_price})
    reason_value = ChangeReason(reason).value
    attempts = 1 if expected_version is not None else max(settings.APPLY_MAX_RETRIES, 1)

    with _product_lock(product_id):
        for attempt in range(1, attempts + 1):
            product = get_product_or_404(db, product_id)
            if attempt > 1:
                db.refresh(product)
            version = expected_version if expected_version is not None else product.version
            old_price = float(product.current_price)

            final_price = round(clamp(float(new_price), active_bounds(db, product)), 2)
            note = notes
            if final_price != round(float(new_price), 2):
                clamp_note = f"requested {new_price} clamped to {final_price}"
                note = f"{notes}; {clamp_note}" if notes else clamp_note
                logger.info("Product %s: %s", product_id, clamp_note)

            try:
                history = record_change(
                    db, product_id, old_price, final_price, reason_value,
                    rule_id=rule_id, user_id=user_id, notes=note,
                )
                swapped = compare_and_swap_price(db, product_id, version, final_price)
                if not swapped:
                    db.rollback()
                    if expected_version is not None:
                        raise ConflictError(
                            f"Product {product_id} was modified concurrently",
                            {"product_id": product_id, "expected_version": expected_version},
                        )
                    logger.warning(
                        "Price CAS lost for product %s (attempt %s/%s)", product_id, attempt, attempts
                    )
                    continue
                db.commit()
            except ConflictError:
                raise
            except Exception:
                db.rollback()
                logger.exception("Price change for product %s rolled back", product_id)
                raise

            db.refresh(product)
            db.refresh(history)
            logger.info(
                "Product %s price %s -> %s (%s)", product_id, old_price, final_price, reason_value
            )
            return {
                "product_id": product_id,
                "old_price": old_price,
                "new_price": final_price,
                "requested_price": float(new_price),
                "clamped": final_price != round(float(new_price), 2),
                "reason": reason_value,
                "version": product.version,
                "history_id": history.id,
                "changed_at": history.changed_at,
            }

    raise ConflictError(
        f"Product {product_id} kept changing; gave up after {attempts} attempts",
        {"product_id": product_id, "attempts": attempts},
    )


# ---------- BULK ----------

def bulk_optimize_prices(
    db: Session,
    category_id: Optional[int] = None,
    dry_run: bool = True,
    user_id: Optional[int] = None,
    cancel_token: Optional[CancellationToken] = None,
    batch_size: Optional[int] = None,
) -> Dict[str, Any]:
    product_ids = list_product_ids(db, category_id)
    result = BatchResult(total=len(product_ids))
    changes: List[Dict[str, Any]] = []
    applied = 0

    for batch in chunked(product_ids, batch_size or settings.BATCH_SIZE):
        if is_cancelled(cancel_token):
            result.cancelled = True
            break
        for product in get_products_by_ids(db, batch):
            if is_cancelled(cancel_token):
                result.cancelled = True
                break
            try:
                recommendation = calculate_optimal_price(db, product.id)
                proposal = {
                    "product_id": product.id,
                    "current_price": recommendation["current_price"],
                    "recommended_price": recommendation["recommended_price"],
                    "change_percentage": recommendation["change_percentage"],
                    "applied": False,
                }
                if not dry_run and recommendation["recommended_price"] != recommendation["current_price"]:
                    rule_ids = recommendation["applied_rule_ids"]
                    apply_price_change(
                        db,
                        product.id,
                        recommendation["recommended_price"],
                        ChangeReason.rule_based,
                        rule_id=rule_ids[-1] if rule_ids else None,
                        user_id=user_id,
                        notes="bulk optimize",
                    )
                    proposal["applied"] = True
                    applied += 1
                if dry_run or proposal["applied"]:
                    changes.append(proposal)
                result.processed += 1
            except Exception as e:
                db.rollback()
                result.failed += 1
                result.errors.append({"product_id": product.id, "error": str(e)})
                logger.exception("Bulk optimize failed for product %s", product.id)
        if result.cancelled:
            break

    if result.cancelled:
        logger.info("Bulk optimize cancelled after %s/%s products", result.processed, result.total)

    return {
        "dry_run": dry_run,
        "category_id": category_id,
        "total": result.total,
        "evaluated": result.processed,
        "applied": applied,
        "failed": result.failed,
        "cancelled": result.cancelled,
        "changes": changes,
        "errors": result.errors,
    }
