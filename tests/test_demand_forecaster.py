from datetime import date, datetime, timedelta

import numpy as np
import pytest

from app.core.exceptions import InvalidForecastRequest, ProductNotFound
from app.enums.pricing import DemandLevel, ForecastAlgorithm, SalesEventType
from app.models.demand_forecast import DemandForecast
from app.services import demand_forecaster, sales_feed
from app.services.demand_forecaster import (
    confidence_for,
    demand_level_for,
    exponential_smoothing_forecast,
    lag_autocorrelation,
    moving_average_forecast,
    select_algorithm,
    trend_seasonal_forecast,
)


def _weekly_series(weeks=9):
    return [10.0 if i % 7 in (5, 6) else 2.0 for i in range(weeks * 7)]


def _record_daily_sales(db, product_id, days, units=2):
    now = datetime.utcnow()
    for i in range(1, days + 1):
        sales_feed.record_event(
            db, product_id, SalesEventType.purchase, quantity=units,
            occurred_at=now - timedelta(days=i),
        )


# ---------- NUMERIC ----------

def test_moving_average_is_flat_mean_of_last_week():
    values = moving_average_forecast([100, 100, 1, 2, 3, 4, 5, 6, 7], 3)
    assert list(values) == pytest.approx([4.0, 4.0, 4.0])


def test_exponential_smoothing_converges_to_constant():
    values = exponential_smoothing_forecast([5.0] * 10, 4, alpha=0.3)
    assert list(values) == pytest.approx([5.0] * 4)


def test_trend_seasonal_follows_trend_and_weekday_pattern():
    series = np.array(_weekly_series()) + np.arange(63) * 0.1
    values = trend_seasonal_forecast(series, 14)
    assert len(values) == 14
    # weekend peaks stay above weekdays
    assert max(values) - min(values) > 5
    # upward trend carries forward week over week
    assert values[7:].mean() > values[:7].mean()


def test_lag_autocorrelation_detects_weekly_pattern():
    assert lag_autocorrelation(_weekly_series()) > 0.3
    assert lag_autocorrelation([1.0] * 30) == 0.0


def test_select_algorithm_auto():
    assert select_algorithm(ForecastAlgorithm.auto, []) == ForecastAlgorithm.category_baseline
    assert select_algorithm(ForecastAlgorithm.auto, [1.0] * 5) == ForecastAlgorithm.moving_average
    assert select_algorithm(ForecastAlgorithm.auto, [1.0] * 20) == ForecastAlgorithm.exponential_smoothing
    assert select_algorithm(ForecastAlgorithm.auto, _weekly_series()) == ForecastAlgorithm.trend_seasonal
    # long but flat history has no seasonality
    assert select_algorithm(ForecastAlgorithm.auto, [3.0] * 60) == ForecastAlgorithm.exponential_smoothing


def test_explicit_algorithm_degrades_on_short_history():
    assert select_algorithm(ForecastAlgorithm.trend_seasonal, [1.0] * 5) == ForecastAlgorithm.exponential_smoothing
    assert select_algorithm(ForecastAlgorithm.exponential_smoothing, [1.0]) == ForecastAlgorithm.moving_average
    assert select_algorithm(ForecastAlgorithm.trend_seasonal, [1.0] * 14) == ForecastAlgorithm.trend_seasonal


def test_confidence_bounds_and_decay():
    near = confidence_for(30, 1)
    far = confidence_for(30, 60)
    assert 0 <= far < near <= 1
    assert confidence_for(1000, 1) > confidence_for(10, 1)
    assert confidence_for(0, 1, baseline=True) == pytest.approx(0.2 * np.exp(-1 / 30), abs=1e-4)


def test_demand_levels():
    assert demand_level_for(0.5) == DemandLevel.low
    assert demand_level_for(1.0) == DemandLevel.normal
    assert demand_level_for(1.2) == DemandLevel.normal
    assert demand_level_for(1.4) == DemandLevel.high
    assert demand_level_for(2.0) == DemandLevel.surge
    assert demand_level_for(None) is None


# ---------- DB ----------

def test_generate_forecast_persists_one_row_per_day(db, make_product):
    product = make_product()
    _record_daily_sales(db, product.id, 20)

    prediction, rows = demand_forecaster.generate_forecast(db, product.id, horizon=7)

    assert prediction.algorithm == ForecastAlgorithm.exponential_smoothing
    assert prediction.history_days == 20
    assert not prediction.low_confidence
    assert len(rows) == 7
    for row in rows:
        assert row.predicted_demand == pytest.approx(2.0)
        assert 0 <= row.confidence <= 1
    assert rows[0].confidence > rows[-1].confidence


def test_regenerating_overwrites_rows(db, make_product):
    product = make_product()
    _record_daily_sales(db, product.id, 5)

    demand_forecaster.generate_forecast(db, product.id, horizon=5)
    demand_forecaster.generate_forecast(db, product.id, horizon=5, algorithm=ForecastAlgorithm.moving_average)

    rows = db.query(DemandForecast).filter(DemandForecast.product_id == product.id).all()
    assert len(rows) == 5
    assert {r.algorithm for r in rows} == {"moving_average"}


def test_no_history_falls_back_to_category_baseline(db, make_product):
    seller = make_product(name="seller", category_id=9)
    newcomer = make_product(name="new", category_id=9)
    # 56 units over the 28-day window across 2 products -> 1 unit/day/product
    now = datetime.utcnow()
    for i in range(1, 29):
        sales_feed.record_event(db, seller.id, SalesEventType.purchase, quantity=2,
                                occurred_at=now - timedelta(days=i))

    prediction, rows = demand_forecaster.generate_forecast(db, newcomer.id, horizon=3)

    assert prediction.algorithm == ForecastAlgorithm.category_baseline
    assert prediction.low_confidence
    assert all(r.low_confidence for r in rows)
    assert rows[0].predicted_demand == pytest.approx(1.0)


def test_invalid_horizon(db, make_product):
    product = make_product()
    with pytest.raises(InvalidForecastRequest):
        demand_forecaster.generate_forecast(db, product.id, horizon=0)
    with pytest.raises(InvalidForecastRequest):
        demand_forecaster.generate_forecast(db, product.id, horizon=91)


def test_unknown_product(db):
    with pytest.raises(ProductNotFound):
        demand_forecaster.generate_forecast(db, 9999, horizon=3)


def test_reconcile_and_accuracy(db, make_product):
    product = make_product()
    today = datetime.utcnow().date()
    yesterday = today - timedelta(days=1)
    two_days_ago = today - timedelta(days=2)
    db.add_all([
        DemandForecast(product_id=product.id, forecast_date=yesterday, predicted_demand=3.0,
                       confidence=0.5, algorithm="moving_average", low_confidence=False),
        DemandForecast(product_id=product.id, forecast_date=two_days_ago, predicted_demand=1.0,
                       confidence=0.5, algorithm="moving_average", low_confidence=False),
    ])
    db.commit()
    sales_feed.record_event(db, product.id, SalesEventType.purchase, quantity=2,
                            occurred_at=datetime.combine(yesterday, datetime.min.time()) + timedelta(hours=12))

    assert demand_forecaster.reconcile_actuals(db, product.id, today) == 2

    report = demand_forecaster.accuracy_report(db, product.id, today=today)
    assert report["total_forecasts"] == 2
    bucket = report["by_algorithm"]["moving_average"]
    assert bucket["count"] == 2
    assert bucket["zero_actual_count"] == 1
    # |2 - 3| / 2 = 50%; the zero-actual day is excluded
    assert bucket["mape"] == pytest.approx(50.0)


def test_demand_signal_low_confidence_without_history(db, make_product):
    product = make_product()
    signal = demand_forecaster.demand_signal(db, product, date.today())
    assert signal.low_confidence
    assert signal.level is None


def test_batch_stops_when_cancelled(db, make_product):
    from app.services.tasks import CancellationToken

    ids = [make_product(name=f"p{i}").id for i in range(3)]
    token = CancellationToken()
    token.cancel()
    result = demand_forecaster.generate_forecasts_batch(db, ids, horizon=3, cancel_token=token)
    assert result.cancelled
    assert result.processed == 0
    assert result.total == 3


def test_batch_reports_failures(db, make_product):
    product = make_product()
    result = demand_forecaster.generate_forecasts_batch(db, [product.id, 424242], horizon=2)
    assert result.processed == 1
    assert result.failed == 1
    assert result.errors[0]["product_id"] == 424242
