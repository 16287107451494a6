from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.enums.pricing import ExperimentArm, ExperimentStatus
from app.models.price_experiment import PriceExperiment
from app.models.price_history import PriceHistory
from app.models.price_rule import PriceRule
from app.schemas.analytics import (
    ExperimentSummary,
    PriceChangeSummary,
    PricingAnalyticsResponse,
    ProductVolatility,
)
from app.services.experiment_runner import INCONCLUSIVE, count_running
from app.services.price_history_ledger import get_window_changes, volatility_from_changes
from app.services.surge_manager import count_active

TOP_VOLATILE_LIMIT = 10


# ---------- PRICE CHANGES ----------

def _change_summary(changes: List[PriceHistory], days: int) -> PriceChangeSummary:
    if not changes:
        return PriceChangeSummary(
            total_changes=0,
            increases=0,
            decreases=0,
            unchanged=0,
            changes_per_day=0.0,
            avg_abs_change_percentage=None,
            by_reason={},
        )

    percentages = [c.change_percentage or 0.0 for c in changes]
    return PriceChangeSummary(
        total_changes=len(changes),
        increases=sum(1 for p in percentages if p > 0),
        decreases=sum(1 for p in percentages if p < 0),
        unchanged=sum(1 for p in percentages if p == 0),
        changes_per_day=round(len(changes) / days, 4),
        avg_abs_change_percentage=round(sum(abs(p) for p in percentages) / len(percentages), 2),
        by_reason=dict(Counter(c.reason for c in changes)),
    )


# ---------- VOLATILITY ----------

def _volatility(changes: List[PriceHistory], days: int) -> List[ProductVolatility]:
    by_product: Dict[int, List[PriceHistory]] = defaultdict(list)
    for change in changes:
        by_product[change.product_id].append(change)

    scores = [
        ProductVolatility(
            product_id=product_id,
            volatility_score=volatility_from_changes(items, days),
            change_count=len(items),
        )
        for product_id, items in by_product.items()
    ]
    scores.sort(key=lambda v: (-v.volatility_score, v.product_id))
    return scores


# ---------- EXPERIMENTS ----------

def _experiment_summary(db: Session, since: datetime) -> ExperimentSummary:
    completed = (
        db.query(PriceExperiment)
        .filter(
            PriceExperiment.status == ExperimentStatus.completed.value,
            PriceExperiment.completed_at >= since,
        )
        .all()
    )
    decided = [e for e in completed if e.winner and e.winner != INCONCLUSIVE]
    return ExperimentSummary(
        completed=len(completed),
        with_winner=len(decided),
        win_rate=round(len(decided) / len(completed) * 100, 2) if completed else None,
        variant_wins=sum(1 for e in decided if e.winner == ExperimentArm.variant.value),
    )


# ---------- REPORT ----------

def get_pricing_analytics(db: Session, days: int = 30) -> PricingAnalyticsResponse:
    days = max(int(days), 1)
    since = datetime.utcnow() - timedelta(days=days)

    changes = get_window_changes(db, days)
    volatility = _volatility(changes, days)

    now = datetime.utcnow()
    active_rules = (
        db.query(func.count(PriceRule.id))
        .filter(
            PriceRule.is_active.is_(True),
            (PriceRule.starts_at.is_(None)) | (PriceRule.starts_at <= now),
            (PriceRule.ends_at.is_(None)) | (PriceRule.ends_at >= now),
        )
        .scalar()
        or 0
    )

    return PricingAnalyticsResponse(
        period_days=days,
        changes=_change_summary(changes, days),
        average_volatility=(
            round(sum(v.volatility_score for v in volatility) / len(volatility), 4) if volatility else 0.0
        ),
        top_volatile_products=volatility[:TOP_VOLATILE_LIMIT],
        experiments=_experiment_summary(db, since),
        active_rules=active_rules,
        running_experiments=count_running(db),
        active_surges=count_active(db),
    )
