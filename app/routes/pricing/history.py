from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_auth
from app.enums.pricing import ChangeReason
from app.schemas.price_history import PriceHistoryPageMeta, PriceHistoryPageResponse
from app.services.price_history_ledger import get_history, get_product_stats, get_volatility_score
from app.services.product_service import get_product_or_404

router = APIRouter(prefix="/api/pricing/history", tags=["Price History"])


@router.get("/{product_id}", response_model=PriceHistoryPageResponse, dependencies=[Depends(require_auth)])
def price_history(
    product_id: int,
    days: int = Query(30, ge=1, le=365),
    reason: Optional[ChangeReason] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    get_product_or_404(db, product_id)
    items, total = get_history(
        db,
        product_id,
        days=days,
        reason=reason.value if reason else None,
        page=page,
        page_size=page_size,
    )
    total_pages = (total + page_size - 1) // page_size if total else 0

    return PriceHistoryPageResponse(
        items=items,
        meta=PriceHistoryPageMeta(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
        ),
        stats=get_product_stats(db, product_id, days),
        volatility_score=get_volatility_score(db, product_id, days),
    )
