"""
Period and segment aggregation for generated reports.

Weighted value follows the pipeline rule used across the app: BACKLOG
work counts at full value, SWAG opportunities are scaled by their
probability.
"""

import csv
import io
from typing import Iterable, List

from forecasting import models
from forecasting.crud import utcnow
from forecasting.models import ForecastStatus, MarketSegment, ProjectType

EXPORT_COLUMNS = [
    "period",
    "market_segment",
    "forecast_id",
    "forecast_status",
    "owner_email",
    "project_id",
    "project_name",
    "project_type",
    "client_name",
    "estimated_value",
    "probability",
    "weighted_value",
    "expected_close_date",
]


def _empty_bucket() -> dict:
    return {
        "forecasts": 0,
        "forecasts_by_status": {s.value: 0 for s in ForecastStatus},
        "projects": 0,
        "backlog_projects": 0,
        "swag_projects": 0,
        "backlog_value": 0.0,
        "swag_value": 0.0,
        "total_value": 0.0,
        "weighted_value": 0.0,
    }


def _add_forecast(bucket: dict, forecast: models.Forecast) -> None:
    bucket["forecasts"] += 1
    bucket["forecasts_by_status"][forecast.status.value] += 1
    for project in forecast.projects:
        value = float(project.estimated_value)
        bucket["projects"] += 1
        bucket["total_value"] += value
        bucket["weighted_value"] += project.weighted_value
        if project.type == ProjectType.BACKLOG:
            bucket["backlog_projects"] += 1
            bucket["backlog_value"] += value
        else:
            bucket["swag_projects"] += 1
            bucket["swag_value"] += value


def _round(bucket: dict) -> dict:
    for key in ("backlog_value", "swag_value", "total_value", "weighted_value"):
        bucket[key] = round(bucket[key], 2)
    return bucket


def _period_info(period: models.ForecastPeriod) -> dict:
    return {
        "id": period.id,
        "name": period.name,
        "status": period.status.value,
        "is_locked": period.is_locked,
        "start_date": period.start_date.isoformat(),
        "end_date": period.end_date.isoformat(),
        "submission_deadline": period.submission_deadline.isoformat(),
    }


def summarize(forecasts: Iterable[models.Forecast]) -> dict:
    segments = {s.value: _empty_bucket() for s in MarketSegment}
    totals = _empty_bucket()
    for forecast in forecasts:
        _add_forecast(segments[forecast.market_segment.value], forecast)
        _add_forecast(totals, forecast)
    return {
        "segments": {k: _round(v) for k, v in segments.items()},
        "totals": _round(totals),
    }


def executive_report(period: models.ForecastPeriod, forecasts: List[models.Forecast]) -> dict:
    data = {"period": _period_info(period), "generated_at": utcnow().isoformat()}
    data.update(summarize(forecasts))
    return data


def segment_report(period: models.ForecastPeriod, segment: MarketSegment, forecasts: List[models.Forecast]) -> dict:
    in_segment = [f for f in forecasts if f.market_segment == segment]
    bucket = _empty_bucket()
    for forecast in in_segment:
        _add_forecast(bucket, forecast)
    return {
        "period": _period_info(period),
        "segment": segment.value,
        "generated_at": utcnow().isoformat(),
        "summary": _round(bucket),
        "forecasts": [
            {
                "id": f.id,
                "user_id": f.user_id,
                "owner": f.user.full_name,
                "status": f.status.value,
                "projects": [
                    {
                        "id": p.id,
                        "name": p.name,
                        "type": p.type.value,
                        "client_name": p.client_name,
                        "estimated_value": float(p.estimated_value),
                        "probability": p.probability,
                        "weighted_value": round(p.weighted_value, 2),
                        "expected_close_date": p.expected_close_date.isoformat(),
                    }
                    for p in f.projects
                ],
            }
            for f in in_segment
        ],
    }


def export_rows(period: models.ForecastPeriod, forecasts: Iterable[models.Forecast]) -> List[dict]:
    rows = []
    for forecast in forecasts:
        for project in forecast.projects:
            rows.append({
                "period": period.name,
                "market_segment": forecast.market_segment.value,
                "forecast_id": forecast.id,
                "forecast_status": forecast.status.value,
                "owner_email": forecast.user.email,
                "project_id": project.id,
                "project_name": project.name,
                "project_type": project.type.value,
                "client_name": project.client_name or "",
                "estimated_value": float(project.estimated_value),
                "probability": project.probability,
                "weighted_value": round(project.weighted_value, 2),
                "expected_close_date": project.expected_close_date.date().isoformat(),
            })
    return rows


def rows_to_csv(rows: List[dict]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()
