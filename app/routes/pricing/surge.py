from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin, require_auth
from app.models.user import User
from app.schemas.surge import (
    SurgeActivateRequest,
    SurgeChangeResponse,
    SurgeCheckResponse,
    SurgeStatusResponse,
)
from app.services import surge_manager

router = APIRouter(prefix="/api/pricing", tags=["Surge Pricing"])


@router.post("/surge", response_model=SurgeChangeResponse, status_code=201)
def activate_surge(
    payload: SurgeActivateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    return surge_manager.activate(
        db,
        payload.product_id,
        payload.event_type,
        payload.multiplier,
        payload.duration_minutes,
        user_id=user.id,
    )


@router.get("/surge/{product_id}", response_model=SurgeStatusResponse, dependencies=[Depends(require_auth)])
def surge_status(product_id: int, db: Session = Depends(get_db)):
    return surge_manager.get_surge_summary(db, product_id)


@router.delete("/surge/{product_id}", response_model=SurgeChangeResponse)
def deactivate_surge(
    product_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    return surge_manager.deactivate(db, product_id, user_id=user.id)


@router.get("/check-surge/{product_id}", response_model=SurgeCheckResponse, dependencies=[Depends(require_admin)])
def check_surge(product_id: int, db: Session = Depends(get_db)):
    return SurgeCheckResponse(
        product_id=product_id,
        proposal=surge_manager.check_conditions(db, product_id),
    )
