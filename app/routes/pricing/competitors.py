from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin, require_auth
from app.schemas.competitor import (
    CompetitorOverviewResponse,
    CompetitorPriceCreate,
    CompetitorPriceResponse,
)
from app.services import competitor_tracker
from app.services.product_service import get_product_or_404

router = APIRouter(prefix="/api/pricing/competitors", tags=["Competitors"])


@router.get("/{product_id}", response_model=CompetitorOverviewResponse, dependencies=[Depends(require_auth)])
def competitor_prices(
    product_id: int,
    in_stock_only: bool = False,
    high_quality_only: bool = False,
    hours: Optional[int] = Query(None, ge=1),
    trend_days: int = Query(7, ge=1, le=90),
    db: Session = Depends(get_db),
):
    product = get_product_or_404(db, product_id)
    return CompetitorOverviewResponse(
        product_id=product_id,
        prices=competitor_tracker.list_prices(
            db,
            product_id,
            in_stock_only=in_stock_only,
            high_quality_only=high_quality_only,
            hours=hours,
        ),
        position=competitor_tracker.get_competitive_position(db, product),
        trends=competitor_tracker.get_price_trends(db, product_id, trend_days),
    )


@router.post(
    "/{product_id}",
    response_model=CompetitorPriceResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
def record_competitor_price(
    product_id: int,
    payload: CompetitorPriceCreate,
    db: Session = Depends(get_db),
):
    get_product_or_404(db, product_id)
    return competitor_tracker.record_price(db, product_id, **payload.dict())
