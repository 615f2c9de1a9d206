from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from forecasting import crud, models, schemas
from forecasting.db import get_db
from forecasting.errors import AuthorizationError
from forecasting.models import ForecastStatus, MarketSegment, PeriodStatus
from forecasting.permissions import (
    can_view_forecast,
    ensure_owner_or_admin,
    ensure_segment_access,
    require_permission,
)
from forecasting.routers import audit_context

logger = structlog.get_logger()

router = APIRouter(prefix="/api/forecasts", tags=["forecasts"])


def _visible_forecast(db: Session, user: models.User, forecast_id: int) -> models.Forecast:
    forecast = crud.get_or_404(db, models.Forecast, forecast_id, "Forecast")
    if not can_view_forecast(user, forecast):
        raise AuthorizationError("Access denied. You cannot view this forecast.")
    return forecast


def _owned_forecast(db: Session, user: models.User, forecast_id: int) -> models.Forecast:
    forecast = crud.get_or_404(db, models.Forecast, forecast_id, "Forecast")
    ensure_owner_or_admin(user, forecast.user_id)
    return forecast


@router.get("", response_model=schemas.ForecastList)
def list_forecasts(period_id: Optional[int] = None, market_segment: Optional[MarketSegment] = None,
                   status: Optional[ForecastStatus] = None,
                   user: models.User = Depends(require_permission("forecasts.list")), db: Session = Depends(get_db)):
    return {"forecasts": crud.list_forecasts(db, user, period_id, market_segment, status)}


# declared before /{forecast_id} so "periods" is not parsed as an id
@router.get("/periods", response_model=schemas.PeriodList)
def list_forecast_periods(status: Optional[PeriodStatus] = None,
                          user: models.User = Depends(require_permission("periods.list")),
                          db: Session = Depends(get_db)):
    return {"periods": crud.list_periods(db, status)}


@router.get("/{forecast_id}", response_model=schemas.ForecastEnvelope)
def get_forecast(forecast_id: int, user: models.User = Depends(require_permission("forecasts.list")),
                 db: Session = Depends(get_db)):
    return {"forecast": _visible_forecast(db, user, forecast_id)}


@router.post("", response_model=schemas.ForecastEnvelope, status_code=201)
def create_forecast(forecast_in: schemas.ForecastCreate, request: Request,
                    user: models.User = Depends(require_permission("forecasts.create")),
                    db: Session = Depends(get_db)):
    ensure_segment_access(user, forecast_in.market_segment)
    forecast = crud.create_forecast(db, user, forecast_in, audit_context(request, user))
    return {"forecast": forecast}


@router.put("/{forecast_id}", response_model=schemas.ForecastEnvelope)
def update_forecast(forecast_id: int, forecast_in: schemas.ForecastUpdate, request: Request,
                    user: models.User = Depends(require_permission("forecasts.update")),
                    db: Session = Depends(get_db)):
    forecast = _owned_forecast(db, user, forecast_id)
    return {"forecast": crud.update_forecast(db, forecast, forecast_in, audit_context(request, user))}


@router.delete("/{forecast_id}", response_model=schemas.Message)
def delete_forecast(forecast_id: int, request: Request,
                    user: models.User = Depends(require_permission("forecasts.delete")),
                    db: Session = Depends(get_db)):
    forecast = _owned_forecast(db, user, forecast_id)
    crud.delete_forecast(db, forecast, audit_context(request, user))
    return {"message": "Forecast deleted"}


@router.post("/{forecast_id}/submit", response_model=schemas.ForecastEnvelope)
def submit_forecast(forecast_id: int, request: Request,
                    user: models.User = Depends(require_permission("forecasts.submit")),
                    db: Session = Depends(get_db)):
    forecast = _owned_forecast(db, user, forecast_id)
    forecast = crud.transition_forecast(db, forecast, "submit", audit_context(request, user))
    logger.info("forecast_submitted", forecast_id=forecast.id, user_id=user.id)
    return {"forecast": forecast}


@router.post("/{forecast_id}/approve", response_model=schemas.ForecastEnvelope)
def approve_forecast(forecast_id: int, request: Request,
                     user: models.User = Depends(require_permission("forecasts.review")),
                     db: Session = Depends(get_db)):
    forecast = crud.get_or_404(db, models.Forecast, forecast_id, "Forecast")
    ensure_segment_access(user, forecast.market_segment)
    forecast = crud.transition_forecast(db, forecast, "approve", audit_context(request, user))
    logger.info("forecast_approved", forecast_id=forecast.id, reviewer_id=user.id)
    return {"forecast": forecast}


@router.post("/{forecast_id}/reject", response_model=schemas.ForecastEnvelope)
def reject_forecast(forecast_id: int, payload: schemas.ForecastReject, request: Request,
                    user: models.User = Depends(require_permission("forecasts.review")),
                    db: Session = Depends(get_db)):
    forecast = crud.get_or_404(db, models.Forecast, forecast_id, "Forecast")
    ensure_segment_access(user, forecast.market_segment)
    forecast = crud.transition_forecast(db, forecast, "reject", audit_context(request, user), reason=payload.reason)
    logger.info("forecast_rejected", forecast_id=forecast.id, reviewer_id=user.id)
    return {"forecast": forecast}
