from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from forecasting import crud, models, reporting, schemas
from forecasting.db import get_db
from forecasting.models import MarketSegment
from forecasting.errors import AuthorizationError
from forecasting.permissions import can_view_report, ensure_segment_access, require_permission
from forecasting.routers import audit_context

logger = structlog.get_logger()

router = APIRouter(prefix="/api/reports", tags=["reports"])


def _period(db: Session, period_id: int) -> models.ForecastPeriod:
    return crud.get_or_404(db, models.ForecastPeriod, period_id, "Forecast period")


@router.get("", response_model=schemas.ReportList)
def list_reports(period_id: Optional[int] = None, report_type: Optional[str] = Query(None, alias="type"),
                 user: models.User = Depends(require_permission("reports.list")), db: Session = Depends(get_db)):
    reports = crud.list_reports(db, period_id, report_type)
    return {"reports": [r for r in reports if can_view_report(user, r)]}


@router.post("/executive/{period_id}", status_code=201, response_model=schemas.ReportEnvelope)
def executive_report(period_id: int, request: Request,
                     user: models.User = Depends(require_permission("reports.executive")),
                     db: Session = Depends(get_db)):
    period = _period(db, period_id)
    forecasts = crud.list_forecasts(db, user, period_id=period.id)
    data = reporting.executive_report(period, forecasts)
    report = crud.create_report(db, period, f"Executive Summary - {period.name}", "EXECUTIVE", data,
                                audit_context(request, user))
    logger.info("report_generated", report_id=report.id, type="EXECUTIVE", period_id=period.id)
    return {"report": report}


@router.post("/segment/{segment}/{period_id}", status_code=201, response_model=schemas.ReportEnvelope)
def segment_report(segment: MarketSegment, period_id: int, request: Request,
                   user: models.User = Depends(require_permission("reports.segment")),
                   db: Session = Depends(get_db)):
    ensure_segment_access(user, segment)
    period = _period(db, period_id)
    forecasts = crud.list_forecasts(db, user, period_id=period.id, market_segment=segment)
    data = reporting.segment_report(period, segment, forecasts)
    report = crud.create_report(db, period, f"{segment.value} Segment - {period.name}", "SEGMENT", data,
                                audit_context(request, user))
    logger.info("report_generated", report_id=report.id, type="SEGMENT", period_id=period.id)
    return {"report": report}


@router.get("/export/{period_id}")
def export_report(period_id: int, user: models.User = Depends(require_permission("reports.export")),
                  db: Session = Depends(get_db)):
    period = _period(db, period_id)
    forecasts = crud.list_forecasts(db, user, period_id=period.id)
    body = reporting.rows_to_csv(reporting.export_rows(period, forecasts))
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="forecast-period-{period.id}.csv"'},
    )


@router.get("/{report_id}", response_model=schemas.ReportEnvelope)
def get_report(report_id: int, user: models.User = Depends(require_permission("reports.list")),
               db: Session = Depends(get_db)):
    report = crud.get_or_404(db, models.Report, report_id, "Report")
    if not can_view_report(user, report):
        raise AuthorizationError()
    return {"report": report}


@router.delete("/{report_id}", response_model=schemas.Message)
def delete_report(report_id: int, request: Request,
                  admin: models.User = Depends(require_permission("reports.delete")), db: Session = Depends(get_db)):
    report = crud.get_or_404(db, models.Report, report_id, "Report")
    crud.delete_report(db, report, audit_context(request, admin))
    return {"message": "Report deleted"}
