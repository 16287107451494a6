from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.schemas.analytics import PricingAnalyticsResponse
from app.services.analytics_service import get_pricing_analytics
from app.dependencies.auth import require_admin

router = APIRouter(prefix="/api/pricing", tags=["Analytics & Reporting"])


@router.get("/analytics", response_model=PricingAnalyticsResponse, dependencies=[Depends(require_admin)])
def pricing_analytics(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
):
    return get_pricing_analytics(db, days)
