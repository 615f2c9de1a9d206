from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import datetime
from typing import Optional, Any, List

from forecasting.models import Role, MarketSegment, ProjectType, ForecastStatus, PeriodStatus, as_utc


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Message(BaseModel):
    message: str

# ---------- Auth ----------
class LoginRequest(BaseModel):
    email: str
    password: str

class RefreshRequest(BaseModel):
    refresh_token: str

class TokenPair(BaseModel):
    token: str
    refresh_token: str

# ---------- Users ----------
class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    role: Role = Role.CONTRIBUTOR
    market_segments: List[MarketSegment] = []

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    password: Optional[str] = Field(None, min_length=8)
    role: Optional[Role] = None
    market_segments: Optional[List[MarketSegment]] = None
    is_active: Optional[bool] = None

class UserOut(ORMModel):
    id: int
    email: str
    first_name: str
    last_name: str
    role: Role
    market_segments: List[MarketSegment] = []
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class UserEnvelope(BaseModel):
    user: UserOut

class UserList(BaseModel):
    users: List[UserOut]

class LoginResponse(TokenPair):
    user: UserOut

# ---------- Periods ----------
class PeriodCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    submission_deadline: datetime
    status: PeriodStatus = PeriodStatus.PLANNING
    is_locked: bool = False

    @model_validator(mode="after")
    def check_dates(self):
        if as_utc(self.end_date) <= as_utc(self.start_date):
            raise ValueError("End date must be after start date")
        return self

class PeriodUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    submission_deadline: Optional[datetime] = None
    status: Optional[PeriodStatus] = None
    is_locked: Optional[bool] = None

class PeriodOut(ORMModel):
    id: int
    name: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    submission_deadline: datetime
    status: PeriodStatus
    is_locked: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class PeriodEnvelope(BaseModel):
    period: PeriodOut

class PeriodList(BaseModel):
    periods: List[PeriodOut]

# ---------- Projects ----------
class ProjectCreate(BaseModel):
    forecast_id: int
    name: str = Field(..., min_length=1)
    type: ProjectType
    estimated_value: float = Field(..., ge=0)
    probability: int = Field(..., ge=0, le=100)
    expected_close_date: datetime
    client_name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_backlog_probability(self):
        if self.type == ProjectType.BACKLOG and self.probability != 100:
            raise ValueError("Backlog projects must have 100% probability")
        return self

class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    type: Optional[ProjectType] = None
    estimated_value: Optional[float] = Field(None, ge=0)
    probability: Optional[int] = Field(None, ge=0, le=100)
    expected_close_date: Optional[datetime] = None
    client_name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None

class ProjectOut(ORMModel):
    id: int
    forecast_id: int
    name: str
    type: ProjectType
    estimated_value: float
    probability: int
    weighted_value: float
    expected_close_date: datetime
    client_name: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class ProjectEnvelope(BaseModel):
    project: ProjectOut

class ProjectList(BaseModel):
    projects: List[ProjectOut]

# ---------- Forecasts ----------
class ForecastCreate(BaseModel):
    period_id: int
    market_segment: MarketSegment
    notes: Optional[str] = None

class ForecastUpdate(BaseModel):
    notes: Optional[str] = None

class ForecastReject(BaseModel):
    reason: str = Field(..., min_length=1)

class ForecastOut(ORMModel):
    id: int
    user_id: int
    period_id: int
    market_segment: MarketSegment
    status: ForecastStatus
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    projects: List[ProjectOut] = []

class ForecastEnvelope(BaseModel):
    forecast: ForecastOut

class ForecastList(BaseModel):
    forecasts: List[ForecastOut]

# ---------- Reports ----------
class ReportOut(ORMModel):
    id: int
    period_id: int
    name: str
    type: str
    data: Any
    generated_at: Optional[datetime] = None
    created_by: Optional[int] = None

class ReportEnvelope(BaseModel):
    report: ReportOut

class ReportList(BaseModel):
    reports: List[ReportOut]

# ---------- Audit / config ----------
class AuditOut(ORMModel):
    id: int
    user_id: Optional[int] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    old_data: Any = None
    new_data: Any = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[datetime] = None

class AuditList(BaseModel):
    logs: List[AuditOut]

class ConfigIn(BaseModel):
    value: str
    description: Optional[str] = None

class ConfigOut(ORMModel):
    key: str
    value: str
    description: Optional[str] = None
    updated_at: Optional[datetime] = None

class ConfigEnvelope(BaseModel):
    config: ConfigOut

class ConfigList(BaseModel):
    config: List[ConfigOut]

# ---------- Navigation ----------
class NavigationItem(BaseModel):
    name: str
    href: str
    icon: str
    active: bool = False

class NavigationOut(BaseModel):
    navigation: List[NavigationItem]
    user: UserOut
