import asyncio
import logging
from typing import Callable, Dict, List

from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.connection import SessionLocal
from app.services import demand_forecaster, surge_manager
from app.services.pricing_service.orchestrator import bulk_optimize_prices
from app.services.product_service import list_product_ids
from app.services.tasks import BatchResult, CancellationToken

logger = logging.getLogger(__name__)

_TOKENS: Dict[str, CancellationToken] = {}


def get_db_session() -> Session:
    return SessionLocal()


def _token(name: str) -> CancellationToken:
    token = _TOKENS.get(name)
    if token is None or token.cancelled:
        token = CancellationToken()
        _TOKENS[name] = token
    return token


async def _run_every(name: str, interval_seconds: int, job: Callable[[CancellationToken], object]):
    """
    Runs `job` in a worker thread every `interval_seconds` until the
    loop's token is cancelled. A failing pass is logged and retried on
    the next tick.
    """
    token = _token(name)
    logger.info("Scheduler loop %s started (every %ss)", name, interval_seconds)
    while not token.cancelled:
        try:
            await asyncio.to_thread(job, token)
        except Exception:
            logger.exception("Scheduler loop %s pass failed", name)
        await asyncio.sleep(interval_seconds)
    logger.info("Scheduler loop %s stopped", name)


# ---------- SURGE EXPIRY ----------

def sweep_surges(cancel_token: CancellationToken) -> BatchResult:
    db = get_db_session()
    try:
        result = surge_manager.sweep_expired(db, cancel_token=cancel_token)
        if result.total:
            logger.info("Surge sweep: %s", result.to_dict())
        return result
    finally:
        db.close()


async def surge_sweep_loop():
    await _run_every("surge_sweep", settings.SURGE_SWEEP_INTERVAL_SECONDS, sweep_surges)


# ---------- FORECAST REFRESH ----------

def refresh_forecasts(cancel_token: CancellationToken) -> BatchResult:
    db = get_db_session()
    try:
        reconciled = demand_forecaster.reconcile_actuals(db)
        if reconciled:
            logger.info("Reconciled actual demand on %s forecast rows", reconciled)
        result = demand_forecaster.generate_forecasts_batch(
            db,
            list_product_ids(db),
            cancel_token=cancel_token,
            batch_size=settings.BATCH_SIZE,
        )
        logger.info("Forecast refresh: %s", result.to_dict())
        return result
    finally:
        db.close()


async def forecast_refresh_loop():
    await _run_every("forecast_refresh", settings.FORECAST_REFRESH_INTERVAL_SECONDS, refresh_forecasts)


# ---------- AUTO OPTIMIZE ----------

def auto_optimize(cancel_token: CancellationToken) -> dict:
    db = get_db_session()
    try:
        summary = bulk_optimize_prices(
            db,
            dry_run=False,
            cancel_token=cancel_token,
            batch_size=settings.BATCH_SIZE,
        )
        logger.info(
            "Auto optimize: evaluated=%s applied=%s failed=%s cancelled=%s",
            summary["evaluated"], summary["applied"], summary["failed"], summary["cancelled"],
        )
        return summary
    finally:
        db.close()


async def auto_optimize_loop():
    await _run_every("auto_optimize", settings.AUTO_OPTIMIZE_INTERVAL_SECONDS, auto_optimize)


# ---------- LIFECYCLE ----------

def start_background_loops() -> List[asyncio.Task]:
    tasks = [
        asyncio.create_task(surge_sweep_loop()),
        asyncio.create_task(forecast_refresh_loop()),
    ]
    if settings.AUTO_OPTIMIZE_ENABLED:
        tasks.append(asyncio.create_task(auto_optimize_loop()))
    return tasks


async def stop_background_loops(tasks: List[asyncio.Task]) -> None:
    for token in _TOKENS.values():
        token.cancel()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
