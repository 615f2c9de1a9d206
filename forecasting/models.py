import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, Text, Boolean, Float, TIMESTAMP, ForeignKey, UniqueConstraint, JSON
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from forecasting.db import Base
from sqlalchemy.orm import relationship

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive datetimes are UTC; SQLite also returns them naive for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    EXECUTIVE = "EXECUTIVE"
    VP_DIRECTOR = "VP_DIRECTOR"
    CONTRIBUTOR = "CONTRIBUTOR"


class MarketSegment(str, enum.Enum):
    ENVIRONMENTAL = "ENVIRONMENTAL"
    ENERGY = "ENERGY"
    PUBLIC_WORKS = "PUBLIC_WORKS"
    RESIDENTIAL = "RESIDENTIAL"


class ProjectType(str, enum.Enum):
    BACKLOG = "BACKLOG"
    SWAG = "SWAG"


class ForecastStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PeriodStatus(str, enum.Enum):
    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(Text, unique=True, nullable=False, index=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    password_hash = Column(Text, nullable=False)
    role = Column(SAEnum(Role, name="role"), nullable=False, default=Role.CONTRIBUTOR)
    # list of MarketSegment values
    market_segments = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    # forecasts go with the user; audit rows stay behind with user_id nulled
    forecasts = relationship("Forecast", back_populates="user", cascade="all, delete-orphan")
    logs = relationship("AuditLog", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def has_segment(self, segment) -> bool:
        if self.role in (Role.ADMIN, Role.EXECUTIVE):
            return True
        return MarketSegment(segment).value in (self.market_segments or [])


class ForecastPeriod(Base):
    __tablename__ = "forecast_periods"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    start_date = Column(TIMESTAMP(timezone=True), nullable=False)
    end_date = Column(TIMESTAMP(timezone=True), nullable=False)
    submission_deadline = Column(TIMESTAMP(timezone=True), nullable=False)
    status = Column(SAEnum(PeriodStatus, name="period_status"), nullable=False, default=PeriodStatus.PLANNING)
    is_locked = Column(Boolean, default=False, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    forecasts = relationship("Forecast", back_populates="period", cascade="all, delete-orphan")
    reports = relationship("Report", back_populates="period", cascade="all, delete-orphan")


class Forecast(Base):
    __tablename__ = "forecasts"
    __table_args__ = (
        UniqueConstraint("user_id", "period_id", "market_segment", name="uq_forecast_user_period_segment"),
    )
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    period_id = Column(Integer, ForeignKey("forecast_periods.id", ondelete="CASCADE"), nullable=False)
    market_segment = Column(SAEnum(MarketSegment, name="market_segment"), nullable=False)
    status = Column(SAEnum(ForecastStatus, name="forecast_status"), nullable=False, default=ForecastStatus.DRAFT)
    submitted_at = Column(TIMESTAMP(timezone=True))
    approved_at = Column(TIMESTAMP(timezone=True))
    rejected_at = Column(TIMESTAMP(timezone=True))
    rejection_reason = Column(Text)
    notes = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="forecasts")
    period = relationship("ForecastPeriod", back_populates="forecasts")
    projects = relationship("Project", back_populates="forecast", cascade="all, delete-orphan")


class Project(Base):
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True, index=True)
    forecast_id = Column(Integer, ForeignKey("forecasts.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    type = Column(SAEnum(ProjectType, name="project_type"), nullable=False)
    estimated_value = Column(Float, nullable=False)
    # whole percent, 0-100
    probability = Column(Integer, nullable=False)
    expected_close_date = Column(TIMESTAMP(timezone=True), nullable=False)
    client_name = Column(Text)
    description = Column(Text)
    notes = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    forecast = relationship("Forecast", back_populates="projects")

    @property
    def weighted_value(self) -> float:
        if self.type == ProjectType.BACKLOG:
            return float(self.estimated_value)
        return float(self.estimated_value) * (self.probability / 100)


class Report(Base):
    __tablename__ = "reports"
    id = Column(Integer, primary_key=True, index=True)
    period_id = Column(Integer, ForeignKey("forecast_periods.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    data = Column(JSONType, nullable=False)
    generated_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    created_by = Column(Integer)

    period = relationship("ForecastPeriod", back_populates="reports")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(Text, nullable=False)
    resource = Column(Text, nullable=False)
    resource_id = Column(Text)
    old_data = Column(JSONType)
    new_data = Column(JSONType)
    ip_address = Column(Text)
    user_agent = Column(Text)
    timestamp = Column(TIMESTAMP(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="logs")


class SystemConfig(Base):
    __tablename__ = "system_config"
    id = Column(Integer, primary_key=True, index=True)
    key = Column(Text, unique=True, nullable=False)
    value = Column(Text, nullable=False)
    description = Column(Text)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
