"""
Price rule evaluation.

Rules are filtered and ordered with plain predicates, then folded in
precedence order: bounds narrow by intersection, proposals chain from the
running candidate, and the last proposal is clamped to the final bounds.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.enums.pricing import RuleScope, RuleType
from app.models.price_rule import PriceRule
from app.models.product import Product

logger = logging.getLogger(__name__)

Bounds = Tuple[Optional[float], Optional[float]]

DEFAULT_DEMAND_MULTIPLIERS = {
    "low": 0.9,
    "normal": 1.0,
    "high": 1.1,
    "surge": 1.2,
}

DEFAULT_STOCK_THRESHOLDS = [
    {"max": 5, "multiplier": 1.15},    # critical
    {"max": 20, "multiplier": 1.10},   # low
    {"max": 100, "multiplier": 1.0},   # normal
    {"max": None, "multiplier": 0.95},  # overstocked
]


@dataclass
class RuleEvaluation:
    candidate_price: float
    bounds: Bounds = (None, None)
    applied_rule_ids: List[int] = field(default_factory=list)
    skipped_rule_ids: List[int] = field(default_factory=list)
    target_percentile: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    rationale: List[str] = field(default_factory=list)


# ===================== PREDICATES =====================


def is_rule_active(rule: PriceRule, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    if not rule.is_active:
        return False
    if rule.starts_at and rule.starts_at > now:
        return False
    if rule.ends_at and rule.ends_at < now:
        return False
    return True


def rule_matches_product(rule: PriceRule, product: Product) -> bool:
    if rule.scope == RuleScope.product.value:
        return rule.product_id == product.id
    if rule.scope == RuleScope.category.value:
        return rule.category_id is not None and rule.category_id == product.category_id
    return rule.scope == RuleScope.global_.value


def sort_rules_by_precedence(rules: List[PriceRule]) -> List[PriceRule]:
    """Lower priority number first; ties go to the most recently created rule."""
    return sorted(
        rules,
        key=lambda r: (
            r.priority if r.priority is not None else 100,
            -(r.created_at.timestamp() if r.created_at else 0.0),
            -(r.id or 0),
        ),
    )


def is_malformed(rule: PriceRule) -> bool:
    if rule.min_price is not None and rule.min_price < 0:
        return True
    if rule.max_price is not None and rule.max_price < 0:
        return True
    if rule.min_price is not None and rule.max_price is not None:
        return rule.min_price > rule.max_price
    return False


def get_applicable_rules(db: Session, product: Product, now: Optional[datetime] = None) -> List[PriceRule]:
    rules = (
        db.query(PriceRule)
        .filter(PriceRule.is_active.is_(True))
        .filter(
            (PriceRule.scope == RuleScope.global_.value)
            | (PriceRule.product_id == product.id)
            | (PriceRule.category_id == product.category_id)
        )
        .all()
    )
    return sort_rules_by_precedence(
        [r for r in rules if is_rule_active(r, now) and rule_matches_product(r, product)]
    )


# ===================== CONDITIONS =====================


def check_conditions(rule: PriceRule, context: Dict[str, Any]) -> bool:
    for condition in rule.conditions or []:
        field_name = condition.get("field")
        operator = condition.get("operator", "=")
        value = condition.get("value")

        if not field_name or field_name not in context:
            continue
        actual = context[field_name]
        # a known field without a value (e.g. no demand signal) cannot satisfy a condition
        if actual is None:
            return False

        try:
            if operator in ("=", "=="):
                ok = actual == value
            elif operator == "!=":
                ok = actual != value
            elif operator == ">":
                ok = actual > value
            elif operator == ">=":
                ok = actual >= value
            elif operator == "<":
                ok = actual < value
            elif operator == "<=":
                ok = actual <= value
            elif operator == "in":
                ok = actual in (value if isinstance(value, list) else [value])
            elif operator == "not_in":
                ok = actual not in (value if isinstance(value, list) else [value])
            else:
                logger.warning("Rule %s has unknown operator %r; condition ignored", rule.id, operator)
                continue
        except TypeError:
            logger.warning("Rule %s condition on %r not comparable; treated as failed", rule.id, field_name)
            return False

        if not ok:
            return False
    return True


# ===================== PROPOSALS =====================


def _type_multiplier(rule: PriceRule, price: float, context: Dict[str, Any]) -> Optional[float]:
    """Rule-type specific adjusted price, or None when the type has nothing to say."""
    adjustments = rule.adjustments or {}

    if rule.rule_type == RuleType.demand_based.value:
        level = context.get("demand_level")
        if level is None:
            return None
        multipliers = adjustments.get("demand_multipliers") or DEFAULT_DEMAND_MULTIPLIERS
        return price * float(multipliers.get(level, 1.0))

    if rule.rule_type == RuleType.competitor_based.value:
        strategy = adjustments.get("competitor_strategy")
        reference = context.get("competitor_avg_price")
        if not strategy or not reference:
            return None
        offset = abs(float(adjustments.get("price_offset", 0.0)))
        if strategy == "undercut":
            return reference - offset
        if strategy == "match":
            return reference
        if strategy == "premium":
            return reference + offset
        return None

    if rule.rule_type == RuleType.time_based.value:
        time_multipliers = adjustments.get("time_multipliers") or {}
        hour = context.get("hour")
        day = context.get("day_of_week")
        hours = time_multipliers.get("hours") or {}
        days = time_multipliers.get("days") or {}
        # JSON round-trips dict keys as strings
        if hour is not None and str(hour) in hours:
            return price * float(hours[str(hour)])
        if day is not None and str(day) in days:
            return price * float(days[str(day)])
        return None

    if rule.rule_type == RuleType.inventory_based.value:
        stock = context.get("stock_level")
        if stock is None:
            return None
        for threshold in adjustments.get("stock_thresholds") or DEFAULT_STOCK_THRESHOLDS:
            limit = threshold.get("max")
            if limit is None or stock <= limit:
                return price * float(threshold.get("multiplier", 1.0))
        return None

    return None


def propose_price(
    rule: PriceRule,
    running_price: float,
    product: Product,
    context: Dict[str, Any],
) -> Optional[float]:
    price = running_price
    proposed = False

    if rule.target_margin is not None and 0 <= rule.target_margin < 1 and (product.cost or 0) > 0:
        price = float(product.cost) / (1 - float(rule.target_margin))
        proposed = True

    typed = _type_multiplier(rule, price, context)
    if typed is not None:
        price = typed
        proposed = True

    adjustments = rule.adjustments or {}
    if adjustments.get("percentage") is not None:
        price = price * (1 + float(adjustments["percentage"]) / 100.0)
        proposed = True
    if adjustments.get("fixed") is not None:
        price = price + float(adjustments["fixed"])
        proposed = True

    if not proposed:
        return None
    return max(price, 0.0)


# ===================== BOUNDS =====================


def intersect_bounds(current: Bounds, rule: PriceRule) -> Optional[Bounds]:
    """Intersection of the running bounds with the rule's, or None when disjoint."""
    low, high = current
    if rule.min_price is not None:
        low = rule.min_price if low is None else max(low, rule.min_price)
    if rule.max_price is not None:
        high = rule.max_price if high is None else min(high, rule.max_price)
    if low is not None and high is not None and low > high:
        return None
    return low, high


def clamp(price: float, bounds: Bounds) -> float:
    low, high = bounds
    if low is not None and price < low:
        price = low
    if high is not None and price > high:
        price = high
    return price


# ===================== EVALUATION =====================


def evaluate_rules(
    product: Product,
    rules: List[PriceRule],
    context: Optional[Dict[str, Any]] = None,
    reference_price: Optional[float] = None,
) -> RuleEvaluation:
    """
    `rules` must already be filtered to active, matching rules; they are
    re-sorted here so callers can pass them in any order.

    `reference_price` replaces current_price as the starting point, e.g. the
    pre-surge base while a surge is live.
    """
    context = context or {}
    current_price = float(reference_price if reference_price is not None else product.current_price)
    evaluation = RuleEvaluation(candidate_price=current_price)

    bounds: Bounds = (None, None)
    running = current_price
    last_proposal: Optional[float] = None

    for rule in sort_rules_by_precedence(rules):
        if is_malformed(rule):
            logger.warning(
                "Skipping malformed rule %s (min_price=%s, max_price=%s)",
                rule.id, rule.min_price, rule.max_price,
            )
            evaluation.skipped_rule_ids.append(rule.id)
            continue

        narrowed = intersect_bounds(bounds, rule)
        if narrowed is None:
            message = (
                f"Rule {rule.id} bounds [{rule.min_price}, {rule.max_price}] conflict with "
                f"higher-precedence bounds [{bounds[0]}, {bounds[1]}]; discarded"
            )
            logger.warning(message)
            evaluation.warnings.append(message)
        else:
            bounds = narrowed

        if (
            rule.rule_type == RuleType.competitor_based.value
            and evaluation.target_percentile is None
            and (rule.adjustments or {}).get("target_percentile") is not None
        ):
            evaluation.target_percentile = float(rule.adjustments["target_percentile"])

        if not check_conditions(rule, context):
            continue

        proposal = propose_price(rule, running, product, context)
        if proposal is not None:
            running = proposal
            last_proposal = proposal
            evaluation.applied_rule_ids.append(rule.id)
            evaluation.rationale.append(
                f"Applied {rule.rule_type} rule '{rule.name}' -> {round(proposal, 2)}"
            )

    base = last_proposal if last_proposal is not None else current_price
    evaluation.bounds = bounds
    evaluation.candidate_price = round(clamp(base, bounds), 2)
    return evaluation


def evaluate_product(
    db: Session,
    product: Product,
    context: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
    reference_price: Optional[float] = None,
) -> RuleEvaluation:
    return evaluate_rules(product, get_applicable_rules(db, product, now), context, reference_price)


def active_bounds(db: Session, product: Product, now: Optional[datetime] = None) -> Bounds:
    return evaluate_product(db, product, {}, now).bounds
