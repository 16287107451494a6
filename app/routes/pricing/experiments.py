from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin, require_auth
from app.enums.pricing import ExperimentStatus
from app.models.user import User
from app.schemas.experiment import (
    ArmAssignment,
    ConversionEvent,
    ExperimentCreate,
    ExperimentResponse,
    ExperimentResults,
    RecordedEvent,
    SessionEvent,
)
from app.services import experiment_runner

router = APIRouter(prefix="/api/pricing/experiments", tags=["Experiments"])


@router.get("", response_model=List[ExperimentResponse], dependencies=[Depends(require_auth)])
def list_experiments(
    product_id: Optional[int] = None,
    status: Optional[ExperimentStatus] = None,
    db: Session = Depends(get_db),
):
    return experiment_runner.list_experiments(db, product_id=product_id, status=status)


@router.post("", response_model=ExperimentResponse, status_code=201, dependencies=[Depends(require_admin)])
def start_experiment(payload: ExperimentCreate, db: Session = Depends(get_db)):
    return experiment_runner.start(
        db,
        payload.product_id,
        payload.name,
        payload.variant_price,
        control_price=payload.control_price,
    )


@router.get("/{experiment_id}", response_model=ExperimentResults, dependencies=[Depends(require_auth)])
def experiment_results(experiment_id: int, db: Session = Depends(get_db)):
    return experiment_runner.get_results(db, experiment_id)


# ---------- STOREFRONT EVENTS ----------

@router.get("/{experiment_id}/assignment", response_model=ArmAssignment, dependencies=[Depends(require_auth)])
def experiment_assignment(
    experiment_id: int,
    session_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    return experiment_runner.get_assigned_price(db, experiment_id, session_id)


@router.post("/{experiment_id}/impressions", response_model=RecordedEvent, dependencies=[Depends(require_auth)])
def record_impression(experiment_id: int, payload: SessionEvent, db: Session = Depends(get_db)):
    return experiment_runner.record_impression(db, experiment_id, payload.session_id)


@router.post("/{experiment_id}/conversions", response_model=RecordedEvent, dependencies=[Depends(require_auth)])
def record_conversion(experiment_id: int, payload: ConversionEvent, db: Session = Depends(get_db)):
    return experiment_runner.record_conversion(
        db, experiment_id, payload.session_id, revenue=payload.revenue
    )


# ---------- LIFECYCLE ----------

@router.post("/{experiment_id}/complete", response_model=ExperimentResults)
def complete_experiment(
    experiment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    return experiment_runner.complete(db, experiment_id, user_id=user.id)


@router.post("/{experiment_id}/cancel", response_model=ExperimentResponse, dependencies=[Depends(require_admin)])
def cancel_experiment(experiment_id: int, db: Session = Depends(get_db)):
    return experiment_runner.cancel(db, experiment_id)
