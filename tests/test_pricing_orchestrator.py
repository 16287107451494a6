from datetime import datetime, timedelta

import pytest

from app.core.exceptions import ConflictError, InvalidPriceError, ProductNotFound
from app.enums.pricing import ChangeReason, SalesEventType
from app.models.price_history import PriceHistory
from app.models.product import Product
from app.services import competitor_tracker, sales_feed
from app.services.pricing_service import orchestrator
from app.services.tasks import CancellationToken


def _history(db, product_id):
    return (
        db.query(PriceHistory)
        .filter(PriceHistory.product_id == product_id)
        .order_by(PriceHistory.changed_at.asc())
        .all()
    )


# ---------- RECOMMEND ----------

def test_margin_rule_recommendation(db, make_product, make_rule):
    product = make_product(current_price=100.0, cost=60.0)
    make_rule(target_margin=0.30)

    result = orchestrator.calculate_optimal_price(db, product.id)

    assert result["recommended_price"] == pytest.approx(85.71)
    assert result["change_amount"] == pytest.approx(-14.29)
    assert result["low_confidence"] is True
    assert result["surge_active"] is False


def test_recommendation_respects_intersected_bounds(db, make_product, make_rule):
    product = make_product(current_price=200.0)
    make_rule(name="A", priority=1, min_price=80, max_price=120)
    make_rule(name="B", priority=5, min_price=90, max_price=150)

    result = orchestrator.calculate_optimal_price(db, product.id)

    assert result["bounds"] == {"min_price": 90, "max_price": 120}
    assert result["recommended_price"] == 120


def test_competitor_target_percentile_nudge(db, make_product, make_rule):
    product = make_product(current_price=100.0)
    make_rule(rule_type="competitor_based", adjustments={"target_percentile": 50})
    for name, price in [("a", 80), ("b", 90)]:
        competitor_tracker.record_price(db, product.id, name, price, quality_score=0.9)

    result = orchestrator.calculate_optimal_price(db, product.id)

    # halfway from 100 toward the median competitor price 85
    assert result["recommended_price"] == pytest.approx(92.5)


def test_demand_nudge_raises_price_on_rising_demand(db, make_product):
    product = make_product(current_price=100.0)
    now = datetime.utcnow()
    # 10 quiet days then 10 busy ones: smoothing predicts above the 20-day mean
    for i in range(1, 21):
        sales_feed.record_event(
            db, product.id, SalesEventType.purchase,
            quantity=10 if i <= 10 else 1,
            occurred_at=now - timedelta(days=i),
        )

    result = orchestrator.calculate_optimal_price(db, product.id)

    assert result["low_confidence"] is False
    assert 100.0 < result["recommended_price"] <= 115.0


def test_recommend_unknown_product(db):
    with pytest.raises(ProductNotFound):
        orchestrator.calculate_optimal_price(db, 12345)


# ---------- APPLY ----------

def test_apply_writes_history_and_price_together(db, make_product):
    product = make_product(current_price=100.0)

    change = orchestrator.apply_price_change(db, product.id, 105.0, ChangeReason.manual, user_id=7, notes="promo")

    db.refresh(product)
    assert product.current_price == 105.0
    assert product.version == 2
    rows = _history(db, product.id)
    assert len(rows) == 1
    assert rows[0].old_price == 100.0
    assert rows[0].new_price == 105.0
    assert rows[0].user_id == 7
    assert change["history_id"] == rows[0].id


def test_apply_clamps_and_notes_requested_price(db, make_product, make_rule):
    product = make_product(current_price=100.0)
    make_rule(min_price=90, max_price=120)

    change = orchestrator.apply_price_change(db, product.id, 200.0, ChangeReason.manual)

    assert change["new_price"] == 120
    assert change["clamped"] is True
    row = _history(db, product.id)[0]
    assert "requested 200.0" in row.notes


def test_noop_apply_records_history(db, make_product):
    product = make_product(current_price=100.0)
    orchestrator.apply_price_change(db, product.id, 100.0, ChangeReason.manual)

    db.refresh(product)
    assert product.current_price == 100.0
    rows = _history(db, product.id)
    assert len(rows) == 1
    assert rows[0].change_percentage == 0.0


def test_apply_with_stale_version_conflicts(db, make_product):
    product = make_product(current_price=100.0)
    orchestrator.apply_price_change(db, product.id, 110.0, ChangeReason.manual)

    with pytest.raises(ConflictError):
        orchestrator.apply_price_change(db, product.id, 120.0, ChangeReason.manual, expected_version=1)

    db.refresh(product)
    assert product.current_price == 110.0
    assert len(_history(db, product.id)) == 1


def test_apply_retries_lost_cas(db, make_product, monkeypatch):
    product = make_product(current_price=100.0)
    real_cas = orchestrator.compare_and_swap_price
    calls = {"n": 0}

    def flaky_cas(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            return False
        return real_cas(*args, **kwargs)

    monkeypatch.setattr(orchestrator, "compare_and_swap_price", flaky_cas)
    orchestrator.apply_price_change(db, product.id, 95.0, ChangeReason.manual)

    assert calls["n"] == 2
    db.refresh(product)
    assert product.current_price == 95.0
    # the losing attempt left nothing behind
    assert len(_history(db, product.id)) == 1


def test_apply_gives_up_after_max_retries(db, make_product, monkeypatch):
    product = make_product(current_price=100.0)
    monkeypatch.setattr(orchestrator, "compare_and_swap_price", lambda *a, **k: False)

    with pytest.raises(ConflictError):
        orchestrator.apply_price_change(db, product.id, 95.0, ChangeReason.manual)

    db.refresh(product)
    assert product.current_price == 100.0
    assert _history(db, product.id) == []


def test_apply_rejects_negative_price(db, make_product):
    product = make_product()
    with pytest.raises(InvalidPriceError):
        orchestrator.apply_price_change(db, product.id, -1.0, ChangeReason.manual)


# ---------- BULK ----------

def test_bulk_dry_run_leaves_prices(db, make_product, make_rule):
    first = make_product(name="a", category_id=3, current_price=100.0, cost=60.0)
    second = make_product(name="b", category_id=3, current_price=50.0, cost=40.0)
    make_product(name="elsewhere", category_id=4)
    make_rule(scope="category", category_id=3, target_margin=0.25)

    result = orchestrator.bulk_optimize_prices(db, category_id=3, dry_run=True)

    assert result["total"] == 2
    assert len(result["changes"]) == 2
    assert result["applied"] == 0
    for product in (first, second):
        db.refresh(product)
    assert first.current_price == 100.0
    assert second.current_price == 50.0


def test_bulk_apply_only_changed_prices(db, make_product, make_rule):
    changing = make_product(name="a", category_id=3, current_price=100.0, cost=60.0)
    make_product(name="b", category_id=3, current_price=80.0, cost=60.0)
    make_rule(scope="product", product_id=changing.id, target_margin=0.5)

    result = orchestrator.bulk_optimize_prices(db, category_id=3, dry_run=False, user_id=1)

    assert result["evaluated"] == 2
    assert result["applied"] == 1
    db.refresh(changing)
    assert changing.current_price == 120.0
    row = _history(db, changing.id)[0]
    assert row.reason == "rule_based"


def test_bulk_respects_cancellation(db, make_product):
    for i in range(3):
        make_product(name=f"p{i}")
    token = CancellationToken()
    token.cancel()

    result = orchestrator.bulk_optimize_prices(db, dry_run=True, cancel_token=token, batch_size=1)

    assert result["cancelled"] is True
    assert result["evaluated"] == 0
    assert result["total"] == 3


def test_bulk_batches_cover_all_products(db, make_product):
    ids = [make_product(name=f"p{i}").id for i in range(5)]
    result = orchestrator.bulk_optimize_prices(db, dry_run=True, batch_size=2)
    assert [c["product_id"] for c in result["changes"]] == ids
    assert db.query(Product).count() == 5


def test_product_locks_come_from_fixed_pool():
    stripes = orchestrator.LOCK_STRIPES
    assert orchestrator._product_lock(7) is orchestrator._product_lock(7 + stripes)
    assert orchestrator._product_lock(7) is not orchestrator._product_lock(8)

    for product_id in range(10 * stripes):
        orchestrator._product_lock(product_id)
    assert len(orchestrator._PRODUCT_LOCKS) == stripes
