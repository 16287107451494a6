import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sqlalchemy import func, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime

from app.database.connection import get_db
from app.dependencies.auth import require_admin
from app.schemas.system import HealthCheckResponse, SystemMetricsResponse
from app.models.price_history import PriceHistory
from app.models.price_rule import PriceRule
from app.models.product import Product
from app.services.experiment_runner import count_running
from app.services.surge_manager import count_active

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


def _uptime(request: Request, now: datetime) -> float:
    start_time = getattr(request.app.state, "start_time", now)
    return (now - start_time).total_seconds()


@router.get("/health", response_model=HealthCheckResponse)
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Lightweight public health check.
    Returns ok + DB connectivity check (SELECT 1).
    """
    now = datetime.utcnow()

    db_ok = True
    extra = {}
    try:
        db.execute(text("SELECT 1"))
        extra["alembic_version_table_present"] = inspect(db.get_bind()).has_table("alembic_version")
    except SQLAlchemyError as e:
        logger.error("Health check DB query failed: %s", e)
        db_ok = False
        extra["db_error"] = str(e)

    return HealthCheckResponse(
        status="ok" if db_ok else "degraded",
        now=now,
        uptime_seconds=_uptime(request, now),
        db_ok=db_ok,
        extra=extra or None,
    )


@router.get("/metrics", response_model=SystemMetricsResponse, dependencies=[Depends(require_admin)])
def system_metrics(request: Request, db: Session = Depends(get_db)):
    """
    Admin-only system metrics in JSON form.
    Uses in-process counters stored on app.state.metrics and DB-derived pricing state.
    """
    now = datetime.utcnow()

    metrics = getattr(request.app.state, "metrics", None) or {}
    requests_count = int(metrics.get("requests", 0))
    total_response_ms = float(metrics.get("total_response_ms", 0.0))
    avg_response_ms = (total_response_ms / requests_count) if requests_count > 0 else None

    start_today = datetime.combine(now.date(), datetime.min.time())
    price_changes_today = (
        db.query(func.count(PriceHistory.id))
        .filter(PriceHistory.changed_at >= start_today)
        .scalar()
    ) or 0
    active_rules = (
        db.query(func.count(PriceRule.id)).filter(PriceRule.is_active.is_(True)).scalar()
    ) or 0
    tracked_products = (
        db.query(func.count(Product.id)).filter(Product.is_active.is_(True)).scalar()
    ) or 0

    return SystemMetricsResponse(
        uptime_seconds=_uptime(request, now),
        now=now,
        requests_count=requests_count,
        error_count=int(metrics.get("errors", 0)),
        avg_response_ms=avg_response_ms,
        active_rules=int(active_rules),
        running_experiments=int(count_running(db)),
        active_surges=int(count_active(db)),
        price_changes_today=int(price_changes_today),
        tracked_products=int(tracked_products),
    )
