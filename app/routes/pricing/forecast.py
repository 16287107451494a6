from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.connection import get_db
from app.dependencies.auth import require_auth
from app.enums.pricing import ForecastAlgorithm
from app.schemas.forecast import ForecastResponse
from app.services.demand_forecaster import accuracy_report, generate_forecast

router = APIRouter(prefix="/api/pricing/forecast", tags=["Demand Forecast"])


@router.get("/{product_id}", response_model=ForecastResponse, dependencies=[Depends(require_auth)])
def forecast_demand(
    product_id: int,
    days: int = Query(7, ge=1, le=settings.FORECAST_MAX_HORIZON_DAYS),
    algorithm: ForecastAlgorithm = ForecastAlgorithm.auto,
    db: Session = Depends(get_db),
):
    prediction, rows = generate_forecast(db, product_id, horizon=days, algorithm=algorithm)
    return ForecastResponse(
        product_id=product_id,
        algorithm=prediction.algorithm.value,
        low_confidence=prediction.low_confidence,
        history_days=prediction.history_days,
        forecasts=rows,
        accuracy=accuracy_report(db, product_id),
    )
