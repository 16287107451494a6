from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin, require_auth
from app.models.user import User
from app.schemas.pricing import (
    ApplyPriceRequest,
    BulkOptimizeRequest,
    BulkOptimizeResponse,
    PriceChangeResponse,
    PriceRecommendation,
)
from app.services.pricing_service.orchestrator import (
    apply_price_change,
    bulk_optimize_prices,
    calculate_optimal_price,
)

router = APIRouter(prefix="/api/pricing", tags=["Pricing"])


@router.get("/recommend/{product_id}", response_model=PriceRecommendation, dependencies=[Depends(require_auth)])
def recommend_price(product_id: int, db: Session = Depends(get_db)):
    return calculate_optimal_price(db, product_id)


@router.post("/apply", response_model=PriceChangeResponse)
def apply_price(
    payload: ApplyPriceRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    return apply_price_change(
        db,
        payload.product_id,
        payload.new_price,
        payload.reason,
        rule_id=payload.rule_id,
        user_id=user.id,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )


@router.post("/bulk-optimize", response_model=BulkOptimizeResponse)
def bulk_optimize(
    payload: BulkOptimizeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    """
    Re-price every active product (optionally one category).
    With dry_run=true nothing is written; every proposal is returned.
    """
    return bulk_optimize_prices(
        db,
        category_id=payload.category_id,
        dry_run=payload.dry_run,
        user_id=user.id,
    )
