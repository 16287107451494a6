"""
A/B price experiments.

Sessions are bucketed with a stable hash so an arm never changes for the
lifetime of an experiment. Counters are incremented with single UPDATE
statements so concurrent requests never lose an impression.
"""
import hashlib
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from scipy import stats
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ExperimentConflict,
    ExperimentNotFound,
    ExperimentStateError,
    InvalidPriceError,
)
from app.enums.pricing import ChangeReason, ExperimentArm, ExperimentStatus
from app.models.price_experiment import PriceExperiment
from app.services.pricing_service import orchestrator
from app.services.product_service import get_product_or_404

logger = logging.getLogger(__name__)

INCONCLUSIVE = "inconclusive"

# allowed source states per transition
_TRANSITIONS = {
    ExperimentStatus.running: {ExperimentStatus.draft},
    ExperimentStatus.completed: {ExperimentStatus.running},
    ExperimentStatus.cancelled: {ExperimentStatus.draft, ExperimentStatus.running},
}


def _check_transition(experiment: PriceExperiment, target: ExperimentStatus) -> None:
    current = ExperimentStatus(experiment.status)
    if current not in _TRANSITIONS[target]:
        raise ExperimentStateError(
            f"Cannot move experiment {experiment.id} from {current.value} to {target.value}",
            {"experiment_id": experiment.id, "status": current.value, "target": target.value},
        )


def _transition(experiment: PriceExperiment, target: ExperimentStatus) -> None:
    _check_transition(experiment, target)
    experiment.status = target.value


def get_experiment(db: Session, experiment_id: int) -> PriceExperiment:
    experiment = db.query(PriceExperiment).filter(PriceExperiment.id == experiment_id).first()
    if not experiment:
        raise ExperimentNotFound(experiment_id)
    return experiment


def list_experiments(
    db: Session,
    product_id: Optional[int] = None,
    status: Optional[ExperimentStatus] = None,
) -> List[PriceExperiment]:
    query = db.query(PriceExperiment)
    if product_id is not None:
        query = query.filter(PriceExperiment.product_id == product_id)
    if status is not None:
        query = query.filter(PriceExperiment.status == ExperimentStatus(status).value)
    return query.order_by(PriceExperiment.created_at.desc(), PriceExperiment.id.desc()).all()


def count_running(db: Session) -> int:
    return (
        db.query(func.count(PriceExperiment.id))
        .filter(PriceExperiment.status == ExperimentStatus.running.value)
        .scalar()
        or 0
    )


# ---------- START ----------

def start(
    db: Session,
    product_id: int,
    name: str,
    variant_price: float,
    control_price: Optional[float] = None,
) -> PriceExperiment:
    product = get_product_or_404(db, product_id)
    if control_price is None:
        control_price = float(product.current_price)
    if variant_price <= 0 or control_price <= 0:
        raise InvalidPriceError(
            "Experiment prices must be positive",
            {"control_price": control_price, "variant_price": variant_price},
        )

    running = (
        db.query(PriceExperiment)
        .filter(
            PriceExperiment.product_id == product_id,
            PriceExperiment.status == ExperimentStatus.running.value,
        )
        .first()
    )
    if running:
        raise ExperimentConflict(
            f"Product {product_id} already has running experiment {running.id}",
            {"product_id": product_id, "experiment_id": running.id},
        )

    experiment = PriceExperiment(
        product_id=product_id,
        name=name,
        control_price=control_price,
        variant_price=variant_price,
        status=ExperimentStatus.draft.value,
    )
    _transition(experiment, ExperimentStatus.running)
    experiment.started_at = datetime.utcnow()
    db.add(experiment)
    db.commit()
    db.refresh(experiment)
    logger.info(
        "Experiment %s started on product %s (control %s, variant %s)",
        experiment.id, product_id, control_price, variant_price,
    )
    return experiment


# ---------- BUCKETING ----------

def assign_arm(experiment_id: int, session_id: str) -> ExperimentArm:
    digest = hashlib.sha256(f"{experiment_id}:{session_id}".encode("utf-8")).hexdigest()
    return ExperimentArm.control if int(digest, 16) % 2 == 0 else ExperimentArm.variant


def get_assigned_price(db: Session, experiment_id: int, session_id: str) -> Dict[str, Any]:
    experiment = get_experiment(db, experiment_id)
    arm = assign_arm(experiment.id, session_id)
    price = experiment.control_price if arm == ExperimentArm.control else experiment.variant_price
    return {
        "experiment_id": experiment.id,
        "session_id": session_id,
        "arm": arm.value,
        "price": price,
        "status": experiment.status,
    }


# ---------- METRICS ----------

def _increment(db: Session, experiment: PriceExperiment, arm: ExperimentArm, **deltas) -> None:
    values = {}
    for metric, delta in deltas.items():
        column = getattr(PriceExperiment, f"{arm.value}_{metric}")
        values[column.key] = column + delta

    res = db.execute(
        update(PriceExperiment)
        .where(
            PriceExperiment.id == experiment.id,
            PriceExperiment.status == ExperimentStatus.running.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise ExperimentStateError(
            f"Experiment {experiment.id} is not running",
            {"experiment_id": experiment.id},
        )
    db.commit()


def record_impression(db: Session, experiment_id: int, session_id: str) -> Dict[str, Any]:
    experiment = get_experiment(db, experiment_id)
    arm = assign_arm(experiment.id, session_id)
    _increment(db, experiment, arm, impressions=1)
    return {"experiment_id": experiment.id, "arm": arm.value}


def record_conversion(
    db: Session,
    experiment_id: int,
    session_id: str,
    revenue: Optional[float] = None,
) -> Dict[str, Any]:
    experiment = get_experiment(db, experiment_id)
    arm = assign_arm(experiment.id, session_id)
    if revenue is None:
        revenue = experiment.control_price if arm == ExperimentArm.control else experiment.variant_price
    _increment(db, experiment, arm, conversions=1, revenue=float(revenue))
    return {"experiment_id": experiment.id, "arm": arm.value, "revenue": float(revenue)}


# ---------- RESULTS ----------

def two_proportion_z_test(
    conversions_a: int,
    impressions_a: int,
    conversions_b: int,
    impressions_b: int,
) -> Tuple[Optional[float], Optional[float]]:
    """Pooled two-proportion z-test. Returns (z, two-sided p) or (None, None)."""
    if impressions_a <= 0 or impressions_b <= 0:
        return None, None

    p_a = conversions_a / impressions_a
    p_b = conversions_b / impressions_b
    pooled = (conversions_a + conversions_b) / (impressions_a + impressions_b)
    se = math.sqrt(pooled * (1 - pooled) * (1 / impressions_a + 1 / impressions_b))
    if se == 0:
        return 0.0, 1.0

    z = (p_b - p_a) / se
    p_value = float(2 * stats.norm.sf(abs(z)))
    return round(z, 4), round(p_value, 6)


def _arm_summary(impressions: int, conversions: int, revenue: float, price: float) -> Dict[str, Any]:
    return {
        "price": price,
        "impressions": impressions,
        "conversions": conversions,
        "revenue": round(revenue, 2),
        "conversion_rate": round(conversions / impressions, 4) if impressions else 0.0,
        "revenue_per_impression": round(revenue / impressions, 4) if impressions else 0.0,
    }


def evaluate(experiment: PriceExperiment) -> Dict[str, Any]:
    control = _arm_summary(
        experiment.control_impressions, experiment.control_conversions,
        experiment.control_revenue, experiment.control_price,
    )
    variant = _arm_summary(
        experiment.variant_impressions, experiment.variant_conversions,
        experiment.variant_revenue, experiment.variant_price,
    )
    z, p_value = two_proportion_z_test(
        experiment.control_conversions, experiment.control_impressions,
        experiment.variant_conversions, experiment.variant_impressions,
    )

    min_sample = settings.EXPERIMENT_MIN_SAMPLE_SIZE
    sample_ok = (
        experiment.control_impressions >= min_sample
        and experiment.variant_impressions >= min_sample
    )
    significant = p_value is not None and p_value < settings.EXPERIMENT_SIGNIFICANCE_LEVEL

    winner = INCONCLUSIVE
    if sample_ok and significant and control["conversion_rate"] != variant["conversion_rate"]:
        winner = (
            ExperimentArm.variant.value
            if variant["conversion_rate"] > control["conversion_rate"]
            else ExperimentArm.control.value
        )

    return {
        "experiment_id": experiment.id,
        "product_id": experiment.product_id,
        "name": experiment.name,
        "status": experiment.status,
        "control": control,
        "variant": variant,
        "z_score": z,
        "p_value": p_value,
        "significant": significant,
        "sample_size_met": sample_ok,
        "winner": winner,
        "started_at": experiment.started_at,
        "completed_at": experiment.completed_at,
    }


def get_results(db: Session, experiment_id: int) -> Dict[str, Any]:
    return evaluate(get_experiment(db, experiment_id))


# ---------- FINISH ----------

def complete(db: Session, experiment_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
    experiment = get_experiment(db, experiment_id)
    db.refresh(experiment)
    results = evaluate(experiment)
    _check_transition(experiment, ExperimentStatus.completed)

    # the winner is applied first; if that fails the experiment stays running
    price_change = None
    winner = results["winner"]
    if winner in (ExperimentArm.control.value, ExperimentArm.variant.value):
        winning_price = (
            experiment.variant_price
            if winner == ExperimentArm.variant.value
            else experiment.control_price
        )
        price_change = orchestrator.apply_price_change(
            db,
            experiment.product_id,
            winning_price,
            ChangeReason.manual,
            user_id=user_id,
            notes="experiment winner",
        )

    _transition(experiment, ExperimentStatus.completed)
    experiment.completed_at = datetime.utcnow()
    experiment.winner = winner
    experiment.p_value = results["p_value"]
    db.commit()
    db.refresh(experiment)
    logger.info(
        "Experiment %s completed: winner=%s p=%s", experiment.id, experiment.winner, experiment.p_value
    )

    results = evaluate(experiment)
    results["price_change"] = price_change
    return results


def cancel(db: Session, experiment_id: int) -> PriceExperiment:
    experiment = get_experiment(db, experiment_id)
    _transition(experiment, ExperimentStatus.cancelled)
    experiment.completed_at = datetime.utcnow()
    db.commit()
    db.refresh(experiment)
    logger.info("Experiment %s cancelled", experiment.id)
    return experiment
