"""
Per-day demand forecasting from the sales feed.

Pure numeric helpers operate on a zero-filled daily series (oldest first,
ending yesterday). The DB-facing functions build that series, pick an
algorithm, persist one DemandForecast row per future day and reconcile
actuals once the day has passed.
"""
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import InvalidForecastRequest
from app.enums.pricing import DemandLevel, ForecastAlgorithm
from app.models.demand_forecast import DemandForecast
from app.models.product import Product
from app.services import sales_feed
from app.services.product_service import count_products_in_category, get_product_or_404
from app.services.tasks import BatchResult, CancellationToken, chunked, is_cancelled

logger = logging.getLogger(__name__)

SEASONAL_PERIOD = 7
MOVING_AVERAGE_WINDOW = 7
AUTO_TREND_SEASONAL_MIN_DAYS = 56
AUTO_SMOOTHING_MIN_DAYS = 14

# minimum history an explicitly requested algorithm needs before degrading
MIN_HISTORY_DAYS = {
    ForecastAlgorithm.trend_seasonal: 14,
    ForecastAlgorithm.exponential_smoothing: 2,
    ForecastAlgorithm.moving_average: 1,
}
DEGRADATION_ORDER = [
    ForecastAlgorithm.trend_seasonal,
    ForecastAlgorithm.exponential_smoothing,
    ForecastAlgorithm.moving_average,
]

HISTORY_HALF_SATURATION_DAYS = 14
HORIZON_DECAY_DAYS = 30.0
BASELINE_HISTORY_FACTOR = 0.2
BASELINE_WINDOW_DAYS = 28
SIGNAL_LOOKAHEAD_DAYS = 7


@dataclass
class Prediction:
    algorithm: ForecastAlgorithm
    low_confidence: bool
    history_days: int
    values: List[float] = field(default_factory=list)
    confidences: List[float] = field(default_factory=list)


@dataclass
class DemandSignal:
    predicted_avg: Optional[float]
    baseline_avg: Optional[float]
    ratio: Optional[float]
    level: Optional[DemandLevel]
    low_confidence: bool
    algorithm: ForecastAlgorithm


# ===================== NUMERIC HELPERS =====================


def lag_autocorrelation(series, lag: int = SEASONAL_PERIOD) -> float:
    x = np.asarray(series, dtype=float)
    if len(x) <= lag:
        return 0.0
    x = x - x.mean()
    denom = float(np.dot(x, x))
    if denom == 0:
        return 0.0
    return float(np.dot(x[:-lag], x[lag:]) / denom)


def has_weekly_seasonality(series, threshold: Optional[float] = None) -> bool:
    if threshold is None:
        threshold = settings.FORECAST_SEASONALITY_THRESHOLD
    return lag_autocorrelation(series, SEASONAL_PERIOD) > threshold


def moving_average_forecast(series, horizon: int, window: int = MOVING_AVERAGE_WINDOW) -> np.ndarray:
    recent = np.asarray(series[-window:], dtype=float)
    return np.full(horizon, recent.mean())


def exponential_smoothing_forecast(series, horizon: int, alpha: Optional[float] = None) -> np.ndarray:
    if alpha is None:
        alpha = settings.FORECAST_SMOOTHING_ALPHA
    values = np.asarray(series, dtype=float)
    level = values[0]
    for value in values[1:]:
        level = alpha * value + (1 - alpha) * level
    return np.full(horizon, level)


def trend_seasonal_forecast(series, horizon: int, period: int = SEASONAL_PERIOD) -> np.ndarray:
    """
    Additive decomposition: day-of-period seasonal indices plus a linear
    trend fitted on the de-seasonalised series. Index n is "today", so
    the first forecast day (tomorrow) is n + 1.
    """
    y = np.asarray(series, dtype=float)
    n = len(y)
    t = np.arange(n)

    slope, intercept = np.polyfit(t, y, 1)
    detrended = y - (intercept + slope * t)
    seasonal = np.array([detrended[i::period].mean() for i in range(period)])
    seasonal -= seasonal.mean()

    slope, intercept = np.polyfit(t, y - seasonal[t % period], 1)
    future_t = np.arange(n + 1, n + 1 + horizon)
    return intercept + slope * future_t + seasonal[future_t % period]


def select_algorithm(
    requested: ForecastAlgorithm,
    series,
) -> ForecastAlgorithm:
    n = len(series)
    if n == 0:
        return ForecastAlgorithm.category_baseline

    if requested == ForecastAlgorithm.auto:
        if n >= AUTO_TREND_SEASONAL_MIN_DAYS and has_weekly_seasonality(series):
            return ForecastAlgorithm.trend_seasonal
        if n >= AUTO_SMOOTHING_MIN_DAYS:
            return ForecastAlgorithm.exponential_smoothing
        return ForecastAlgorithm.moving_average

    if requested == ForecastAlgorithm.category_baseline:
        return requested

    for candidate in DEGRADATION_ORDER[DEGRADATION_ORDER.index(requested):]:
        if n >= MIN_HISTORY_DAYS[candidate]:
            if candidate != requested:
                logger.info(
                    "Forecast degraded from %s to %s (history=%s days)",
                    requested.value, candidate.value, n,
                )
            return candidate
    return ForecastAlgorithm.moving_average


def confidence_for(history_days: int, days_ahead: int, baseline: bool = False) -> float:
    if baseline:
        history_factor = BASELINE_HISTORY_FACTOR
    else:
        history_factor = history_days / (history_days + HISTORY_HALF_SATURATION_DAYS)
    value = history_factor * math.exp(-days_ahead / HORIZON_DECAY_DAYS)
    return round(min(max(value, 0.0), 1.0), 4)


def demand_level_for(ratio: Optional[float]) -> Optional[DemandLevel]:
    if ratio is None:
        return None
    if ratio < 0.8:
        return DemandLevel.low
    if ratio <= 1.2:
        return DemandLevel.normal
    if ratio <= 1.5:
        return DemandLevel.high
    return DemandLevel.surge


# ===================== HISTORY =====================


def build_history(db: Session, product_id: int, today: Optional[date] = None) -> np.ndarray:
    """Zero-filled daily purchase quantities from the first sale up to yesterday."""
    today = today or datetime.utcnow().date()
    yesterday = today - timedelta(days=1)
    window_start = today - timedelta(days=settings.FORECAST_HISTORY_DAYS)

    first = sales_feed.first_sale_date(db, product_id, window_start)
    if first is None or first > yesterday:
        return np.array([], dtype=float)

    by_day = sales_feed.daily_sales(db, product_id, first, yesterday)
    days = (yesterday - first).days + 1
    return np.array(
        [by_day.get(first + timedelta(days=i), 0.0) for i in range(days)],
        dtype=float,
    )


def category_baseline(db: Session, category_id: Optional[int], today: Optional[date] = None) -> float:
    """Average daily demand per product across the category."""
    today = today or datetime.utcnow().date()
    end = datetime.combine(today, datetime.min.time())
    start = end - timedelta(days=BASELINE_WINDOW_DAYS)

    product_count = count_products_in_category(db, category_id)
    if product_count == 0:
        return 0.0
    units = sales_feed.category_units_sold(db, category_id, start, end)
    return units / (BASELINE_WINDOW_DAYS * product_count)


# ===================== PREDICTION =====================


def predict(
    db: Session,
    product: Product,
    horizon: int,
    algorithm: ForecastAlgorithm = ForecastAlgorithm.auto,
    today: Optional[date] = None,
) -> Prediction:
    series = build_history(db, product.id, today)
    chosen = select_algorithm(algorithm, series)
    n = len(series)

    if chosen == ForecastAlgorithm.category_baseline:
        logger.info("No sales history for product %s; using category baseline", product.id)
        baseline = category_baseline(db, product.category_id, today)
        values = np.full(horizon, baseline)
        low_confidence = True
    else:
        if chosen == ForecastAlgorithm.trend_seasonal:
            values = trend_seasonal_forecast(series, horizon)
        elif chosen == ForecastAlgorithm.exponential_smoothing:
            values = exponential_smoothing_forecast(series, horizon)
        else:
            values = moving_average_forecast(series, horizon)
        low_confidence = False

    baseline_mode = chosen == ForecastAlgorithm.category_baseline
    return Prediction(
        algorithm=chosen,
        low_confidence=low_confidence,
        history_days=n,
        values=[round(max(float(v), 0.0), 2) for v in values],
        confidences=[confidence_for(n, d, baseline_mode) for d in range(1, horizon + 1)],
    )


def generate_forecast(
    db: Session,
    product_id: int,
    horizon: int = 7,
    algorithm: ForecastAlgorithm = ForecastAlgorithm.auto,
    today: Optional[date] = None,
) -> Tuple[Prediction, List[DemandForecast]]:
    if horizon < 1 or horizon > settings.FORECAST_MAX_HORIZON_DAYS:
        raise InvalidForecastRequest(
            f"Horizon must be between 1 and {settings.FORECAST_MAX_HORIZON_DAYS} days",
            {"horizon": horizon},
        )

    product = get_product_or_404(db, product_id)
    today = today or datetime.utcnow().date()
    prediction = predict(db, product, horizon, ForecastAlgorithm(algorithm), today)

    dates = [today + timedelta(days=d) for d in range(1, horizon + 1)]
    existing = {
        row.forecast_date: row
        for row in db.query(DemandForecast)
        .filter(
            DemandForecast.product_id == product_id,
            DemandForecast.forecast_date.in_(dates),
        )
        .all()
    }

    now = datetime.utcnow()
    rows: List[DemandForecast] = []
    for forecast_date, value, confidence in zip(dates, prediction.values, prediction.confidences):
        row = existing.get(forecast_date)
        if row is None:
            row = DemandForecast(product_id=product_id, forecast_date=forecast_date)
            db.add(row)
        row.predicted_demand = value
        row.confidence = confidence
        row.algorithm = prediction.algorithm.value
        row.low_confidence = prediction.low_confidence
        row.calculated_at = now
        rows.append(row)

    db.commit()
    for row in rows:
        db.refresh(row)
    return prediction, rows


def demand_signal(db: Session, product: Product, today: Optional[date] = None) -> DemandSignal:
    """Upcoming demand relative to the recent historical baseline."""
    prediction = predict(db, product, SIGNAL_LOOKAHEAD_DAYS, ForecastAlgorithm.auto, today)
    if prediction.low_confidence:
        return DemandSignal(None, None, None, None, True, prediction.algorithm)

    series = build_history(db, product.id, today)
    recent = series[-BASELINE_WINDOW_DAYS:]
    baseline_avg = float(recent.mean()) if len(recent) else 0.0
    predicted_avg = float(np.mean(prediction.values))

    if baseline_avg <= 0:
        return DemandSignal(predicted_avg, baseline_avg, None, None, False, prediction.algorithm)

    ratio = predicted_avg / baseline_avg
    return DemandSignal(
        predicted_avg=round(predicted_avg, 4),
        baseline_avg=round(baseline_avg, 4),
        ratio=round(ratio, 4),
        level=demand_level_for(ratio),
        low_confidence=False,
        algorithm=prediction.algorithm,
    )


# ===================== ACCURACY =====================


def reconcile_actuals(db: Session, product_id: Optional[int] = None, today: Optional[date] = None) -> int:
    """Fill actual_demand for past forecast dates. Returns rows updated."""
    today = today or datetime.utcnow().date()
    query = db.query(DemandForecast).filter(
        DemandForecast.forecast_date < today,
        DemandForecast.actual_demand.is_(None),
    )
    if product_id is not None:
        query = query.filter(DemandForecast.product_id == product_id)

    pending: Dict[int, List[DemandForecast]] = defaultdict(list)
    for row in query.all():
        pending[row.product_id].append(row)

    updated = 0
    for pid, rows in pending.items():
        first = min(r.forecast_date for r in rows)
        last = max(r.forecast_date for r in rows)
        actuals = sales_feed.daily_sales(db, pid, first, last)
        for row in rows:
            row.actual_demand = actuals.get(row.forecast_date, 0.0)
            updated += 1

    if updated:
        db.commit()
    return updated


def accuracy_report(
    db: Session,
    product_id: Optional[int] = None,
    days: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Mean absolute percentage error over the trailing window, by algorithm."""
    today = today or datetime.utcnow().date()
    days = days or settings.FORECAST_ACCURACY_WINDOW_DAYS

    query = db.query(DemandForecast).filter(
        DemandForecast.actual_demand.isnot(None),
        DemandForecast.forecast_date < today,
        DemandForecast.forecast_date >= today - timedelta(days=days),
    )
    if product_id is not None:
        query = query.filter(DemandForecast.product_id == product_id)
    rows = query.all()

    buckets: Dict[str, List[DemandForecast]] = defaultdict(list)
    for row in rows:
        buckets[row.algorithm].append(row)

    def _mape(items: List[DemandForecast]) -> Optional[float]:
        errors = [
            abs(r.actual_demand - r.predicted_demand) / r.actual_demand * 100
            for r in items
            if r.actual_demand > 0
        ]
        return round(sum(errors) / len(errors), 2) if errors else None

    return {
        "window_days": days,
        "total_forecasts": len(rows),
        "overall_mape": _mape(rows),
        "by_algorithm": {
            algorithm: {
                "count": len(items),
                "zero_actual_count": sum(1 for r in items if r.actual_demand == 0),
                "mape": _mape(items),
            }
            for algorithm, items in sorted(buckets.items())
        },
    }


# ===================== BATCH =====================


def generate_forecasts_batch(
    db: Session,
    product_ids: List[int],
    horizon: int = 7,
    cancel_token: Optional[CancellationToken] = None,
    batch_size: Optional[int] = None,
) -> BatchResult:
    result = BatchResult(total=len(product_ids))
    for batch in chunked(product_ids, batch_size or settings.BATCH_SIZE):
        for product_id in batch:
            if is_cancelled(cancel_token):
                result.cancelled = True
                logger.info(
                    "Forecast batch cancelled after %s/%s products",
                    result.processed, result.total,
                )
                return result
            try:
                generate_forecast(db, product_id, horizon)
                result.processed += 1
            except Exception as e:
                db.rollback()
                result.failed += 1
                result.errors.append({"product_id": product_id, "error": str(e)})
                logger.exception("Forecast generation failed for product %s", product_id)
    return result
