from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from forecasting import crud, models, schemas
from forecasting.db import get_db
from forecasting.models import PeriodStatus
from forecasting.permissions import require_permission
from forecasting.routers import audit_context

router = APIRouter(prefix="/api/periods", tags=["periods"])


@router.get("", response_model=schemas.PeriodList)
def list_periods(status: Optional[PeriodStatus] = None,
                 user: models.User = Depends(require_permission("periods.list")), db: Session = Depends(get_db)):
    return {"periods": crud.list_periods(db, status)}


@router.get("/{period_id}", response_model=schemas.PeriodEnvelope)
def get_period(period_id: int, user: models.User = Depends(require_permission("periods.list")),
               db: Session = Depends(get_db)):
    return {"period": crud.get_or_404(db, models.ForecastPeriod, period_id, "Forecast period")}


@router.post("", response_model=schemas.PeriodEnvelope, status_code=201)
def create_period(period_in: schemas.PeriodCreate, request: Request,
                  admin: models.User = Depends(require_permission("periods.create")), db: Session = Depends(get_db)):
    return {"period": crud.create_period(db, period_in, audit_context(request, admin))}


@router.put("/{period_id}", response_model=schemas.PeriodEnvelope)
def update_period(period_id: int, period_in: schemas.PeriodUpdate, request: Request,
                  admin: models.User = Depends(require_permission("periods.update")), db: Session = Depends(get_db)):
    period = crud.get_or_404(db, models.ForecastPeriod, period_id, "Forecast period")
    return {"period": crud.update_period(db, period, period_in, audit_context(request, admin))}


@router.delete("/{period_id}", response_model=schemas.Message)
def delete_period(period_id: int, request: Request,
                  admin: models.User = Depends(require_permission("periods.delete")), db: Session = Depends(get_db)):
    period = crud.get_or_404(db, models.ForecastPeriod, period_id, "Forecast period")
    crud.delete_period(db, period, audit_context(request, admin))
    return {"message": "Forecast period deleted"}
