from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app.models.price_history import PriceHistory
from app.services import price_history_ledger
from app.services.price_history_ledger import volatility_from_changes


def _change(old, new):
    return SimpleNamespace(old_price=old, new_price=new)


def _record(db, product_id, old, new, reason="manual"):
    row = price_history_ledger.record_change(db, product_id, old, new, reason)
    db.commit()
    return row


def test_record_change_computes_percentage(db, make_product):
    product = make_product()
    row = _record(db, product.id, 100.0, 110.0)
    assert row.change_percentage == pytest.approx(10.0)
    assert row.user_id is None


def test_changed_at_strictly_increasing(db, make_product):
    product = make_product()
    future = datetime.utcnow() + timedelta(hours=1)
    db.add(PriceHistory(product_id=product.id, old_price=1, new_price=2, change_percentage=100,
                        reason="manual", changed_at=future))
    db.commit()

    rows = [_record(db, product.id, 100.0, 100.0 + i) for i in range(5)]
    stamps = [future] + [r.changed_at for r in rows]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


def test_history_pagination_and_filters(db, make_product):
    product = make_product()
    for i in range(5):
        _record(db, product.id, 100.0 + i, 101.0 + i, reason="surge" if i % 2 else "manual")

    items, total = price_history_ledger.get_history(db, product.id, page=1, page_size=2)
    assert total == 5
    assert len(items) == 2
    assert items[0].new_price == 105.0  # newest first

    surge_items, surge_total = price_history_ledger.get_history(db, product.id, reason="surge")
    assert surge_total == 2
    assert {i.reason for i in surge_items} == {"surge"}


def test_product_stats(db, make_product):
    product = make_product()
    _record(db, product.id, 100.0, 110.0, reason="manual")
    _record(db, product.id, 110.0, 99.0, reason="rule_based")

    stats = price_history_ledger.get_product_stats(db, product.id)
    assert stats["total_changes"] == 2
    assert stats["increases"] == 1
    assert stats["decreases"] == 1
    assert stats["starting_price"] == 100.0
    assert stats["current_price"] == 99.0
    assert stats["by_reason"] == {"manual": 1, "rule_based": 1}
    assert price_history_ledger.get_product_stats(db, 9999) is None


def test_volatility_zero_without_movement():
    assert volatility_from_changes([], 30) == 0.0
    assert volatility_from_changes([_change(100, 100)], 30) == 0.0


def test_volatility_increases_with_change_count():
    swings = [_change(100, 110), _change(110, 100)]
    scores = [volatility_from_changes(swings * n, 30) for n in range(1, 6)]
    assert all(a < b for a, b in zip(scores, scores[1:]))
    assert all(s > 0 for s in scores)


def test_volatility_keeps_ranking_busy_products():
    swings = [_change(100, 150), _change(150, 100)]
    busy = volatility_from_changes(swings * 30, 30)
    busier = volatility_from_changes(swings * 60, 30)
    assert busier > busy > 100.0


def test_volatility_increases_with_range():
    narrow = volatility_from_changes([_change(100, 102), _change(102, 100)], 30)
    wide = volatility_from_changes([_change(100, 130), _change(130, 100)], 30)
    assert wide > narrow
