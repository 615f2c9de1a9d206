from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List

from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from forecasting import models, schemas
from forecasting.auth import hash_password
from forecasting.errors import NotFoundError, ValidationError
from forecasting.models import ForecastStatus, ProjectType, Role, as_utc


@dataclass
class AuditContext:
    """Who is acting, and from where; stamped on every audit row."""
    actor_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def snapshot(row) -> dict:
    data = {c.key: getattr(row, c.key) for c in row.__table__.columns if c.key != "password_hash"}
    return jsonable_encoder(data)


def record_audit(db: Session, ctx: Optional[AuditContext], action: str, resource: str,
                 resource_id=None, old=None, new=None) -> models.AuditLog:
    ctx = ctx or AuditContext()
    log = models.AuditLog(
        user_id=ctx.actor_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        old_data=old,
        new_data=new,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    db.add(log)
    return log


def commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise


def get_or_404(db: Session, model, obj_id: int, label: str):
    obj = db.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj

# ---------- Users ----------
def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()

def list_users(db: Session, role: Optional[Role] = None, is_active: Optional[bool] = None) -> List[models.User]:
    q = db.query(models.User)
    if role is not None:
        q = q.filter(models.User.role == role)
    if is_active is not None:
        q = q.filter(models.User.is_active == is_active)
    return q.order_by(models.User.id).all()

def create_user(db: Session, user_in: schemas.UserCreate, ctx: Optional[AuditContext] = None) -> models.User:
    user = models.User(
        email=user_in.email,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        password_hash=hash_password(user_in.password),
        role=user_in.role,
        market_segments=[s.value for s in user_in.market_segments],
        is_active=True,
    )
    db.add(user)
    db.flush()
    record_audit(db, ctx, "create_user", "user", user.id, new=snapshot(user))
    commit(db)
    db.refresh(user)
    return user

def update_user(db: Session, user: models.User, user_in: schemas.UserUpdate, ctx: Optional[AuditContext] = None) -> models.User:
    before = snapshot(user)
    changes = user_in.model_dump(exclude_unset=True)
    password = changes.pop("password", None)
    if password:
        user.password_hash = hash_password(password)
    if "market_segments" in changes and changes["market_segments"] is not None:
        changes["market_segments"] = [models.MarketSegment(s).value for s in changes["market_segments"]]
    for field, value in changes.items():
        if value is None and field in ("role", "market_segments", "is_active"):
            continue
        setattr(user, field, value)
    db.flush()
    record_audit(db, ctx, "update_user", "user", user.id, old=before, new=snapshot(user))
    commit(db)
    db.refresh(user)
    return user

def set_user_active(db: Session, user: models.User, active: bool, ctx: Optional[AuditContext] = None) -> models.User:
    user.is_active = active
    record_audit(db, ctx, "restore_user" if active else "deactivate_user", "user", user.id,
                 new={"is_active": active})
    commit(db)
    db.refresh(user)
    return user

def touch_last_login(db: Session, user: models.User, ctx: Optional[AuditContext] = None) -> models.User:
    user.last_login_at = utcnow()
    record_audit(db, ctx, "login", "user", user.id, new={"email": user.email})
    commit(db)
    db.refresh(user)
    return user

def delete_user(db: Session, user: models.User, ctx: Optional[AuditContext] = None) -> None:
    # forecasts cascade; the user's own audit rows keep existing with user_id nulled
    record_audit(db, ctx, "delete_user", "user", user.id, old=snapshot(user))
    db.delete(user)
    commit(db)

# ---------- Periods ----------
def list_periods(db: Session, status: Optional[models.PeriodStatus] = None) -> List[models.ForecastPeriod]:
    q = db.query(models.ForecastPeriod)
    if status is not None:
        q = q.filter(models.ForecastPeriod.status == status)
    return q.order_by(models.ForecastPeriod.start_date.desc(), models.ForecastPeriod.id.desc()).all()

def create_period(db: Session, period_in: schemas.PeriodCreate, ctx: Optional[AuditContext] = None) -> models.ForecastPeriod:
    period = models.ForecastPeriod(**period_in.model_dump())
    db.add(period)
    db.flush()
    record_audit(db, ctx, "create_period", "forecast_period", period.id, new=snapshot(period))
    commit(db)
    db.refresh(period)
    return period

def update_period(db: Session, period: models.ForecastPeriod, period_in: schemas.PeriodUpdate,
                  ctx: Optional[AuditContext] = None) -> models.ForecastPeriod:
    before = snapshot(period)
    changes = {k: v for k, v in period_in.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    start = as_utc(changes.get("start_date", period.start_date))
    end = as_utc(changes.get("end_date", period.end_date))
    if end <= start:
        raise ValidationError("End date must be after start date", field="end_date", value=end.isoformat())
    for field, value in changes.items():
        setattr(period, field, value)
    db.flush()
    record_audit(db, ctx, "update_period", "forecast_period", period.id, old=before, new=snapshot(period))
    commit(db)
    db.refresh(period)
    return period

def delete_period(db: Session, period: models.ForecastPeriod, ctx: Optional[AuditContext] = None) -> None:
    # forecasts (and their projects) and reports go with the period
    record_audit(db, ctx, "delete_period", "forecast_period", period.id, old=snapshot(period))
    db.delete(period)
    commit(db)

# ---------- Forecasts ----------
def visible_forecasts_query(db: Session, viewer: models.User):
    q = db.query(models.Forecast)
    if viewer.role == Role.CONTRIBUTOR:
        q = q.filter(models.Forecast.user_id == viewer.id)
    elif viewer.role == Role.VP_DIRECTOR:
        segments = [models.MarketSegment(s) for s in (viewer.market_segments or [])]
        q = q.filter(or_(models.Forecast.user_id == viewer.id, models.Forecast.market_segment.in_(segments)))
    return q

def list_forecasts(db: Session, viewer: models.User, period_id: Optional[int] = None,
                   market_segment: Optional[models.MarketSegment] = None,
                   status: Optional[ForecastStatus] = None) -> List[models.Forecast]:
    q = visible_forecasts_query(db, viewer)
    if period_id is not None:
        q = q.filter(models.Forecast.period_id == period_id)
    if market_segment is not None:
        q = q.filter(models.Forecast.market_segment == market_segment)
    if status is not None:
        q = q.filter(models.Forecast.status == status)
    return q.order_by(models.Forecast.id).all()

def ensure_period_open(period: models.ForecastPeriod) -> None:
    if period.is_locked:
        raise ValidationError(f"Forecast period '{period.name}' is locked", field="period_id", value=period.id)

def ensure_forecast_editable(forecast: models.Forecast) -> None:
    ensure_period_open(forecast.period)
    if forecast.status in (ForecastStatus.SUBMITTED, ForecastStatus.APPROVED):
        raise ValidationError(f"Forecast is {forecast.status.value} and can no longer be edited",
                              field="status", value=forecast.status.value)

def create_forecast(db: Session, owner: models.User, forecast_in: schemas.ForecastCreate,
                    ctx: Optional[AuditContext] = None) -> models.Forecast:
    period = get_or_404(db, models.ForecastPeriod, forecast_in.period_id, "Forecast period")
    ensure_period_open(period)
    forecast = models.Forecast(
        user_id=owner.id,
        period_id=period.id,
        market_segment=forecast_in.market_segment,
        notes=forecast_in.notes,
        status=ForecastStatus.DRAFT,
    )
    db.add(forecast)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise
    record_audit(db, ctx, "create_forecast", "forecast", forecast.id, new=snapshot(forecast))
    commit(db)
    db.refresh(forecast)
    return forecast

def update_forecast(db: Session, forecast: models.Forecast, forecast_in: schemas.ForecastUpdate,
                    ctx: Optional[AuditContext] = None) -> models.Forecast:
    ensure_forecast_editable(forecast)
    before = snapshot(forecast)
    for field, value in forecast_in.model_dump(exclude_unset=True).items():
        setattr(forecast, field, value)
    db.flush()
    record_audit(db, ctx, "update_forecast", "forecast", forecast.id, old=before, new=snapshot(forecast))
    commit(db)
    db.refresh(forecast)
    return forecast

def delete_forecast(db: Session, forecast: models.Forecast, ctx: Optional[AuditContext] = None) -> None:
    ensure_period_open(forecast.period)
    record_audit(db, ctx, "delete_forecast", "forecast", forecast.id, old=snapshot(forecast))
    db.delete(forecast)
    commit(db)

# action -> (statuses it may start from, status it ends in)
FORECAST_TRANSITIONS = {
    "submit": ({ForecastStatus.DRAFT, ForecastStatus.REJECTED}, ForecastStatus.SUBMITTED),
    "approve": ({ForecastStatus.SUBMITTED}, ForecastStatus.APPROVED),
    "reject": ({ForecastStatus.SUBMITTED}, ForecastStatus.REJECTED),
}

def transition_forecast(db: Session, forecast: models.Forecast, action: str,
                        ctx: Optional[AuditContext] = None, reason: Optional[str] = None) -> models.Forecast:
    allowed_from, target = FORECAST_TRANSITIONS[action]
    if forecast.status not in allowed_from:
        raise ValidationError(
            f"Cannot {action} a forecast in status {forecast.status.value}",
            field="status", value=forecast.status.value,
        )
    ensure_period_open(forecast.period)
    before = snapshot(forecast)
    now = utcnow()
    forecast.status = target
    if target == ForecastStatus.SUBMITTED:
        forecast.submitted_at = now
        forecast.rejected_at = None
        forecast.rejection_reason = None
    elif target == ForecastStatus.APPROVED:
        forecast.approved_at = now
    else:
        forecast.rejected_at = now
        forecast.rejection_reason = reason
    db.flush()
    record_audit(db, ctx, f"{action}_forecast", "forecast", forecast.id, old=before, new=snapshot(forecast))
    commit(db)
    db.refresh(forecast)
    return forecast

# ---------- Projects ----------
def list_projects(db: Session, viewer: models.User, forecast_id: Optional[int] = None,
                  project_type: Optional[ProjectType] = None) -> List[models.Project]:
    forecast_ids = visible_forecasts_query(db, viewer).with_entities(models.Forecast.id)
    q = db.query(models.Project).filter(models.Project.forecast_id.in_(forecast_ids.scalar_subquery()))
    if forecast_id is not None:
        q = q.filter(models.Project.forecast_id == forecast_id)
    if project_type is not None:
        q = q.filter(models.Project.type == project_type)
    return q.order_by(models.Project.id).all()

def create_project(db: Session, forecast: models.Forecast, project_in: schemas.ProjectCreate,
                   ctx: Optional[AuditContext] = None) -> models.Project:
    ensure_forecast_editable(forecast)
    project = models.Project(**project_in.model_dump())
    db.add(project)
    db.flush()
    record_audit(db, ctx, "create_project", "project", project.id, new=snapshot(project))
    commit(db)
    db.refresh(project)
    return project

def update_project(db: Session, project: models.Project, project_in: schemas.ProjectUpdate,
                   ctx: Optional[AuditContext] = None) -> models.Project:
    ensure_forecast_editable(project.forecast)
    changes = project_in.model_dump(exclude_unset=True)
    for required in ("name", "type", "estimated_value", "probability", "expected_close_date"):
        if required in changes and changes[required] is None:
            raise ValidationError(f"{required} cannot be null", field=required, value=None)
    project_type = changes.get("type", project.type)
    probability = changes.get("probability", project.probability)
    if project_type == ProjectType.BACKLOG and probability != 100:
        raise ValidationError("Backlog projects must have 100% probability", field="probability", value=probability)
    before = snapshot(project)
    for field, value in changes.items():
        setattr(project, field, value)
    db.flush()
    record_audit(db, ctx, "update_project", "project", project.id, old=before, new=snapshot(project))
    commit(db)
    db.refresh(project)
    return project

def delete_project(db: Session, project: models.Project, ctx: Optional[AuditContext] = None) -> None:
    ensure_forecast_editable(project.forecast)
    record_audit(db, ctx, "delete_project", "project", project.id, old=snapshot(project))
    db.delete(project)
    commit(db)

# ---------- Reports ----------
def list_reports(db: Session, period_id: Optional[int] = None, report_type: Optional[str] = None) -> List[models.Report]:
    q = db.query(models.Report)
    if period_id is not None:
        q = q.filter(models.Report.period_id == period_id)
    if report_type:
        q = q.filter(models.Report.type == report_type.upper())
    return q.order_by(models.Report.generated_at.desc(), models.Report.id.desc()).all()

def create_report(db: Session, period: models.ForecastPeriod, name: str, report_type: str, data: dict,
                  ctx: Optional[AuditContext] = None) -> models.Report:
    ctx = ctx or AuditContext()
    report = models.Report(period_id=period.id, name=name, type=report_type, data=data, created_by=ctx.actor_id)
    db.add(report)
    db.flush()
    record_audit(db, ctx, "generate_report", "report", report.id, new={"name": name, "type": report_type})
    commit(db)
    db.refresh(report)
    return report

def delete_report(db: Session, report: models.Report, ctx: Optional[AuditContext] = None) -> None:
    record_audit(db, ctx, "delete_report", "report", report.id, old={"name": report.name, "type": report.type})
    db.delete(report)
    commit(db)

# ---------- Logs ----------
def list_logs(db: Session, limit: int = 1000, resource: Optional[str] = None, user_id: Optional[int] = None):
    q = db.query(models.AuditLog)
    if resource:
        q = q.filter(models.AuditLog.resource == resource)
    if user_id is not None:
        q = q.filter(models.AuditLog.user_id == user_id)
    return q.order_by(models.AuditLog.timestamp.desc(), models.AuditLog.id.desc()).limit(limit).all()

# ---------- System config ----------
def list_config(db: Session) -> List[models.SystemConfig]:
    return db.query(models.SystemConfig).order_by(models.SystemConfig.key).all()

def get_config(db: Session, key: str) -> Optional[models.SystemConfig]:
    return db.query(models.SystemConfig).filter(models.SystemConfig.key == key).first()

def set_config(db: Session, key: str, config_in: schemas.ConfigIn, ctx: Optional[AuditContext] = None) -> models.SystemConfig:
    row = get_config(db, key)
    before = None
    if row is None:
        row = models.SystemConfig(key=key, value=config_in.value, description=config_in.description)
        db.add(row)
    else:
        before = {"value": row.value, "description": row.description}
        row.value = config_in.value
        if config_in.description is not None:
            row.description = config_in.description
    record_audit(db, ctx, "set_config", "system_config", key, old=before,
                 new={"value": row.value, "description": row.description})
    commit(db)
    db.refresh(row)
    return row

def delete_config(db: Session, row: models.SystemConfig, ctx: Optional[AuditContext] = None) -> None:
    record_audit(db, ctx, "delete_config", "system_config", row.key, old={"value": row.value})
    db.delete(row)
    commit(db)
