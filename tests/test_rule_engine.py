from datetime import datetime, timedelta

import pytest

from app.models.price_rule import PriceRule
from app.models.product import Product
from app.services.pricing_service.rule_engine import (
    check_conditions,
    evaluate_product,
    evaluate_rules,
    get_applicable_rules,
    is_rule_active,
    rule_matches_product,
    sort_rules_by_precedence,
)


def _product(**kwargs):
    defaults = dict(id=1, name="p", category_id=3, current_price=100.0, cost=60.0, stock_quantity=50)
    defaults.update(kwargs)
    return Product(**defaults)


def _rule(id, **kwargs):
    defaults = dict(name=f"rule-{id}", scope="global", rule_type="time_based", is_active=True, priority=50)
    defaults.update(kwargs)
    return PriceRule(id=id, **defaults)


# ---------- PREDICATES ----------

def test_is_rule_active_respects_window():
    now = datetime(2026, 3, 1, 12, 0)
    assert is_rule_active(_rule(1), now)
    assert not is_rule_active(_rule(2, is_active=False), now)
    assert not is_rule_active(_rule(3, starts_at=now + timedelta(hours=1)), now)
    assert not is_rule_active(_rule(4, ends_at=now - timedelta(seconds=1)), now)
    assert is_rule_active(_rule(5, starts_at=now - timedelta(days=1), ends_at=now + timedelta(days=1)), now)


def test_rule_matches_product_by_scope():
    product = _product(id=7, category_id=3)
    assert rule_matches_product(_rule(1, scope="product", product_id=7), product)
    assert not rule_matches_product(_rule(2, scope="product", product_id=8), product)
    assert rule_matches_product(_rule(3, scope="category", category_id=3), product)
    assert not rule_matches_product(_rule(4, scope="category", category_id=4), product)
    assert rule_matches_product(_rule(5, scope="global"), product)


def test_sort_by_priority_then_newest():
    old = _rule(1, priority=10, created_at=datetime(2026, 1, 1))
    new = _rule(2, priority=10, created_at=datetime(2026, 2, 1))
    first = _rule(3, priority=1, created_at=datetime(2025, 1, 1))
    assert [r.id for r in sort_rules_by_precedence([old, new, first])] == [3, 2, 1]


def test_check_conditions_operators():
    rule = _rule(1, conditions=[
        {"field": "stock_level", "operator": "<", "value": 10},
        {"field": "day_of_week", "operator": "in", "value": [5, 6]},
        {"field": "unknown_field", "operator": "=", "value": 1},
    ])
    assert check_conditions(rule, {"stock_level": 3, "day_of_week": 6})
    assert not check_conditions(rule, {"stock_level": 30, "day_of_week": 6})
    assert not check_conditions(rule, {"stock_level": 3, "day_of_week": 2})


def test_condition_on_field_without_value_fails():
    rule = _rule(1, rule_type="demand_based", conditions=[
        {"field": "demand_level", "operator": "in", "value": ["high", "surge"]},
    ])
    assert not check_conditions(rule, {"demand_level": None, "stock_level": 3})
    assert check_conditions(rule, {"demand_level": "high"})

    evaluation = evaluate_rules(
        _product(), [_rule(2, adjustments={"percentage": 10}, conditions=rule.conditions)],
        {"demand_level": None},
    )
    assert evaluation.applied_rule_ids == []
    assert evaluation.candidate_price == 100.0


# ---------- EVALUATION ----------

def test_target_margin_proposal():
    evaluation = evaluate_rules(_product(), [_rule(1, target_margin=0.30)])
    assert evaluation.candidate_price == pytest.approx(85.71)
    assert evaluation.applied_rule_ids == [1]


def test_bounds_intersect():
    a = _rule(1, priority=1, min_price=80, max_price=120)
    b = _rule(2, priority=5, min_price=90, max_price=150)
    evaluation = evaluate_rules(_product(), [b, a])
    assert evaluation.bounds == (90, 120)
    assert evaluation.candidate_price == 100.0


def test_disjoint_bounds_keep_higher_precedence():
    a = _rule(1, priority=1, min_price=80, max_price=100)
    b = _rule(2, priority=5, min_price=150, max_price=200)
    evaluation = evaluate_rules(_product(current_price=120.0), [a, b])
    assert evaluation.bounds == (80, 100)
    assert evaluation.candidate_price == 100.0
    assert len(evaluation.warnings) == 1


def test_malformed_rule_is_skipped():
    broken = _rule(1, priority=1, min_price=200, max_price=100, adjustments={"percentage": 50})
    evaluation = evaluate_rules(_product(), [broken])
    assert evaluation.skipped_rule_ids == [1]
    assert evaluation.applied_rule_ids == []
    assert evaluation.bounds == (None, None)
    assert evaluation.candidate_price == 100.0


def test_proposal_clamped_to_bounds():
    rule = _rule(1, min_price=90, max_price=110, adjustments={"percentage": 50})
    evaluation = evaluate_rules(_product(), [rule])
    assert evaluation.candidate_price == 110


def test_failed_conditions_still_apply_bounds():
    rule = _rule(
        1, min_price=120, max_price=150, adjustments={"percentage": -50},
        conditions=[{"field": "stock_level", "operator": "<", "value": 5}],
    )
    evaluation = evaluate_rules(_product(), [rule], {"stock_level": 40})
    assert evaluation.applied_rule_ids == []
    assert evaluation.candidate_price == 120


def test_proposals_chain_in_precedence_order():
    first = _rule(1, priority=1, adjustments={"percentage": 10})
    second = _rule(2, priority=2, adjustments={"fixed": -5})
    evaluation = evaluate_rules(_product(), [second, first])
    assert evaluation.candidate_price == pytest.approx(105.0)
    assert evaluation.applied_rule_ids == [1, 2]


def test_demand_multiplier_defaults():
    rule = _rule(1, rule_type="demand_based")
    assert evaluate_rules(_product(), [rule], {"demand_level": "high"}).candidate_price == pytest.approx(110.0)
    assert evaluate_rules(_product(), [rule], {"demand_level": "low"}).candidate_price == pytest.approx(90.0)
    # no demand signal, no proposal
    assert evaluate_rules(_product(), [rule], {}).applied_rule_ids == []


def test_competitor_strategies():
    undercut = _rule(1, rule_type="competitor_based",
                     adjustments={"competitor_strategy": "undercut", "price_offset": 2})
    evaluation = evaluate_rules(_product(), [undercut], {"competitor_avg_price": 95.0})
    assert evaluation.candidate_price == pytest.approx(93.0)

    premium = _rule(2, rule_type="competitor_based",
                    adjustments={"competitor_strategy": "premium", "price_offset": 5, "target_percentile": 25})
    evaluation = evaluate_rules(_product(), [premium], {"competitor_avg_price": 95.0})
    assert evaluation.candidate_price == pytest.approx(100.0)
    assert evaluation.target_percentile == 25.0


def test_time_multipliers_use_string_keys():
    rule = _rule(1, rule_type="time_based",
                 adjustments={"time_multipliers": {"hours": {"18": 1.2}, "days": {"6": 0.9}}})
    assert evaluate_rules(_product(), [rule], {"hour": 18, "day_of_week": 6}).candidate_price == pytest.approx(120.0)
    assert evaluate_rules(_product(), [rule], {"hour": 9, "day_of_week": 6}).candidate_price == pytest.approx(90.0)
    assert evaluate_rules(_product(), [rule], {"hour": 9, "day_of_week": 1}).applied_rule_ids == []


def test_inventory_thresholds():
    rule = _rule(1, rule_type="inventory_based")
    assert evaluate_rules(_product(), [rule], {"stock_level": 3}).candidate_price == pytest.approx(115.0)
    assert evaluate_rules(_product(), [rule], {"stock_level": 500}).candidate_price == pytest.approx(95.0)


def test_no_rules_keeps_current_price():
    evaluation = evaluate_rules(_product(), [])
    assert evaluation.candidate_price == 100.0
    assert evaluation.bounds == (None, None)


# ---------- DB ----------

def test_get_applicable_rules_filters_scope_and_window(db, make_product, make_rule):
    product = make_product(category_id=3)
    other = make_product(category_id=4)
    make_rule(name="global", priority=20)
    make_rule(name="mine", scope="product", product_id=product.id, priority=10)
    make_rule(name="theirs", scope="product", product_id=other.id, priority=1)
    make_rule(name="category", scope="category", category_id=3, priority=30)
    make_rule(name="inactive", is_active=False, priority=1)
    make_rule(name="future", starts_at=datetime.utcnow() + timedelta(days=1), priority=1)

    names = [r.name for r in get_applicable_rules(db, product)]
    assert names == ["mine", "global", "category"]


def test_evaluate_product_reference_price(db, make_product, make_rule):
    product = make_product(current_price=150.0)
    make_rule(adjustments={"percentage": 10})
    evaluation = evaluate_product(db, product, {}, reference_price=100.0)
    assert evaluation.candidate_price == pytest.approx(110.0)
