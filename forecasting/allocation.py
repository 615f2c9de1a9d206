"""
Monthly revenue/cost allocation for a job.

A job's totals are spread across ``YYYY-MM`` months. Each month is either
an ``actual`` (booked, locked) or a ``projection`` (editable). The editor
works on whatever set of months the current view shows: the overlap of
the job with one fiscal year (November through October), or the job's
whole duration.

``AllocationEditor`` holds the form state of the allocation screen: the
committed allocations plus the raw text the user is typing, which is
only parsed and committed on blur.
"""

import copy
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Union

ACTUAL = "actual"
PROJECTION = "projection"
ALLOCATION_TYPES = (ACTUAL, PROJECTION)

VIEW_FISCAL_YEAR = "fiscal_year"
VIEW_JOB_DURATION = "job_duration"
VIEW_MODES = (VIEW_FISCAL_YEAR, VIEW_JOB_DURATION)

FIELDS = ("revenue", "cost")

BACKLOG = "BACKLOG"

# rounding slack when comparing allocated totals with the job total
MAX_ALLOCATION_VARIANCE = 0.01

FISCAL_YEAR_START_MONTH = 11

MONTH_NOT_AVAILABLE = "Month is not available for allocation in current view"
ACTUALS_LOCKED = "Cannot modify actual values"

_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_LEADING_FLOAT = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")

DateLike = Union[date, str]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------- number formatting ----------

def format_number_with_commas(num: float) -> str:
    """1250000 -> '1,250,000'; at most two decimals, trailing zeros dropped."""
    value = Decimal(str(num)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{value:,.2f}"
    return text.rstrip("0").rstrip(".")


def parse_formatted_number(text: Optional[str]) -> float:
    """Strip grouping separators and read the leading number; anything unreadable is 0."""
    if text is None:
        return 0.0
    match = _LEADING_FLOAT.match(str(text).replace(",", ""))
    if not match:
        return 0.0
    value = float(match.group(1))
    if not math.isfinite(value):
        return 0.0
    return value


# ---------- months ----------

def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def month_key(value: DateLike) -> str:
    d = _to_date(value)
    return f"{d.year:04d}-{d.month:02d}"


def months_between(start: DateLike, end: DateLike) -> List[str]:
    """Every month touched by [start, end], inclusive."""
    start_d, end_d = _to_date(start), _to_date(end)
    year, month = start_d.year, start_d.month
    months = []
    while (year, month) <= (end_d.year, end_d.month):
        months.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def format_month_label(month: str) -> str:
    year, num = month.split("-")
    return f"{_MONTH_ABBR[int(num) - 1]} {int(year)}"


def fiscal_year_of(value: DateLike) -> int:
    d = _to_date(value)
    return d.year if d.month >= FISCAL_YEAR_START_MONTH else d.year - 1


def fiscal_year_range(fiscal_year: int):
    return date(fiscal_year, 11, 1), date(fiscal_year + 1, 10, 31)


def fiscal_year_label(fiscal_year: int) -> str:
    return f"FY {fiscal_year}-{str(fiscal_year + 1)[-2:]}"


# ---------- data ----------

@dataclass
class MonthlyAllocation:
    month: str
    allocated_revenue: float = 0.0
    allocated_cost: float = 0.0
    allocation_type: str = PROJECTION
    is_locked: bool = False
    notes: str = ""
    updated_by: Optional[str] = None
    last_updated: datetime = field(default_factory=_now)

    @property
    def month_label(self) -> str:
        return format_month_label(self.month)

    def value(self, field_name: str) -> float:
        return self.allocated_revenue if field_name == "revenue" else self.allocated_cost


@dataclass
class AllocationJob:
    id: int
    name: str
    type: str
    probability: int
    start_date: date
    end_date: date
    total_revenue: float
    total_cost: float
    market: str = ""
    monthly_allocations: List[MonthlyAllocation] = field(default_factory=list)
    last_allocation_update: Optional[datetime] = None

    def _weighted(self, value: float) -> float:
        if str(getattr(self.type, "value", self.type)).upper() == BACKLOG:
            return value
        return value * (self.probability / 100)

    @property
    def effective_revenue(self) -> float:
        return self._weighted(self.total_revenue)

    @property
    def effective_cost(self) -> float:
        return self._weighted(self.total_cost)

    def allocation(self, month: str) -> Optional[MonthlyAllocation]:
        for a in self.monthly_allocations:
            if a.month == month:
                return a
        return None


@dataclass
class AllocationSummary:
    total_revenue: float
    total_cost: float
    total_profit: float
    allocated_revenue: float
    allocated_cost: float
    remaining_revenue: float
    remaining_cost: float
    allocation_percentage_revenue: float
    allocation_percentage_cost: float
    actuals_revenue: float
    actuals_cost: float
    projections_revenue: float
    projections_cost: float


@dataclass
class AllocationUpdate:
    month: str
    revenue: Optional[float] = None
    cost: Optional[float] = None
    allocation_type: str = PROJECTION
    notes: Optional[str] = None


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    can_save = is_valid


@dataclass
class UpdateResult:
    success: bool
    job: Optional[AllocationJob] = None
    errors: List[str] = field(default_factory=list)


# ---------- calculations ----------

def calculate_summary(job: AllocationJob, allocations: Optional[List[MonthlyAllocation]] = None) -> AllocationSummary:
    allocations = job.monthly_allocations if allocations is None else allocations
    allocated_revenue = sum(a.allocated_revenue for a in allocations)
    allocated_cost = sum(a.allocated_cost for a in allocations)
    actuals = [a for a in allocations if a.allocation_type == ACTUAL]
    projections = [a for a in allocations if a.allocation_type == PROJECTION]
    revenue, cost = job.effective_revenue, job.effective_cost
    return AllocationSummary(
        total_revenue=revenue,
        total_cost=cost,
        total_profit=revenue - cost,
        allocated_revenue=allocated_revenue,
        allocated_cost=allocated_cost,
        remaining_revenue=revenue - allocated_revenue,
        remaining_cost=cost - allocated_cost,
        allocation_percentage_revenue=(allocated_revenue / revenue * 100) if revenue > 0 else 0.0,
        allocation_percentage_cost=(allocated_cost / cost * 100) if cost > 0 else 0.0,
        actuals_revenue=sum(a.allocated_revenue for a in actuals),
        actuals_cost=sum(a.allocated_cost for a in actuals),
        projections_revenue=sum(a.allocated_revenue for a in projections),
        projections_cost=sum(a.allocated_cost for a in projections),
    )


def allocation_status(job: AllocationJob) -> str:
    summary = calculate_summary(job)
    if summary.allocated_revenue == 0 and summary.allocated_cost == 0:
        return "not_started"
    if (abs(summary.remaining_revenue) <= MAX_ALLOCATION_VARIANCE
            and abs(summary.remaining_cost) <= MAX_ALLOCATION_VARIANCE):
        return "complete"
    return "partial"


def job_duration_months(job: AllocationJob) -> List[str]:
    return months_between(job.start_date, job.end_date)


def fiscal_year_overlap_months(job: AllocationJob, fiscal_year: int) -> List[str]:
    fy_start, fy_end = fiscal_year_range(fiscal_year)
    start = max(_to_date(job.start_date), fy_start)
    end = min(_to_date(job.end_date), fy_end)
    if start > end:
        return []
    return months_between(start, end)


def merge_allocations(existing: List[MonthlyAllocation], template_months: List[str]) -> List[MonthlyAllocation]:
    """Template months filled with existing rows where present; existing rows outside the template are kept."""
    by_month = {a.month: a for a in existing}
    merged = [by_month.get(m) or MonthlyAllocation(month=m) for m in template_months]
    merged.extend(a for a in existing if a.month not in set(template_months))
    return sorted(merged, key=lambda a: a.month)


def _touched(job: AllocationJob, allocations: List[MonthlyAllocation]) -> AllocationJob:
    job.monthly_allocations = allocations
    job.last_allocation_update = _now()
    return job


def initialize_fiscal_year_allocations(job: AllocationJob, fiscal_year: int) -> AllocationJob:
    months = fiscal_year_overlap_months(job, fiscal_year)
    if not months:
        return job
    job = copy.deepcopy(job)
    return _touched(job, merge_allocations(job.monthly_allocations, months))


def initialize_job_duration_allocations(job: AllocationJob) -> AllocationJob:
    job = copy.deepcopy(job)
    return _touched(job, merge_allocations(job.monthly_allocations, job_duration_months(job)))


def validate_allocation_update(job: AllocationJob, update: AllocationUpdate,
                               available_months: Optional[List[str]] = None) -> ValidationResult:
    """Check one month's edit against the months on screen and the job totals.

    ``available_months`` defaults to the months the job currently carries
    allocation rows for; the job's nominal start/end dates play no part.
    """
    result = ValidationResult()
    if available_months is None:
        available_months = [a.month for a in job.monthly_allocations]
    if update.month not in available_months:
        result.errors.append(MONTH_NOT_AVAILABLE)

    if update.revenue is not None and update.revenue < 0:
        result.errors.append("Revenue cannot be negative")
    if update.cost is not None and update.cost < 0:
        result.errors.append("Cost cannot be negative")
    if update.allocation_type not in ALLOCATION_TYPES:
        result.errors.append(f"Unknown allocation type '{update.allocation_type}'")

    if update.revenue is not None or update.cost is not None:
        trial = [copy.copy(a) for a in job.monthly_allocations]
        row = next((a for a in trial if a.month == update.month), None)
        if row is None:
            row = MonthlyAllocation(month=update.month, allocation_type=update.allocation_type)
            trial.append(row)
        if update.revenue is not None:
            row.allocated_revenue = update.revenue
        if update.cost is not None:
            row.allocated_cost = update.cost
        summary = calculate_summary(job, trial)
        if summary.remaining_revenue < -MAX_ALLOCATION_VARIANCE:
            result.errors.append("Total allocated revenue exceeds job total")
        if summary.remaining_cost < -MAX_ALLOCATION_VARIANCE:
            result.errors.append("Total allocated cost exceeds job total")
    return result


def update_monthly_allocation(job: AllocationJob, update: AllocationUpdate,
                              available_months: Optional[List[str]] = None,
                              updated_by: Optional[str] = None) -> UpdateResult:
    validation = validate_allocation_update(job, update, available_months)
    if not validation.is_valid:
        return UpdateResult(success=False, errors=validation.errors)

    existing = job.allocation(update.month)
    if existing is not None and existing.is_locked and existing.allocation_type == ACTUAL:
        return UpdateResult(success=False, errors=[ACTUALS_LOCKED])

    job = copy.deepcopy(job)
    row = job.allocation(update.month)
    if row is None:
        row = MonthlyAllocation(month=update.month)
        job.monthly_allocations.append(row)
        job.monthly_allocations.sort(key=lambda a: a.month)
    if update.revenue is not None:
        row.allocated_revenue = update.revenue
    if update.cost is not None:
        row.allocated_cost = update.cost
    row.allocation_type = update.allocation_type
    row.is_locked = update.allocation_type == ACTUAL
    row.notes = update.notes or row.notes
    row.updated_by = updated_by or row.updated_by
    row.last_updated = _now()
    job.last_allocation_update = row.last_updated
    return UpdateResult(success=True, job=job)


def apply_straight_line(job: AllocationJob, exclude_actuals: bool = True) -> AllocationJob:
    """Spread what actuals have not consumed evenly over the editable months."""
    editable = [a for a in job.monthly_allocations if not (exclude_actuals and a.allocation_type == ACTUAL)]
    if not editable:
        return job
    actuals = [a for a in job.monthly_allocations if a.allocation_type == ACTUAL]
    remaining_revenue = job.effective_revenue - sum(a.allocated_revenue for a in actuals)
    remaining_cost = job.effective_cost - sum(a.allocated_cost for a in actuals)
    per_month_revenue = remaining_revenue / len(editable)
    per_month_cost = remaining_cost / len(editable)

    job = copy.deepcopy(job)
    now = _now()
    for a in job.monthly_allocations:
        if exclude_actuals and a.allocation_type == ACTUAL:
            continue
        a.allocated_revenue = per_month_revenue
        a.allocated_cost = per_month_cost
        a.last_updated = now
    return _touched(job, job.monthly_allocations)


def clear_projections(job: AllocationJob) -> AllocationJob:
    job = copy.deepcopy(job)
    now = _now()
    for a in job.monthly_allocations:
        if a.allocation_type == ACTUAL:
            continue
        a.allocated_revenue = 0.0
        a.allocated_cost = 0.0
        a.last_updated = now
    return _touched(job, job.monthly_allocations)


def distribute_remaining(job: AllocationJob) -> AllocationJob:
    """Fill empty projection months with an equal share of the unallocated remainder.

    Revenue and cost are handled independently; only a positive remainder
    is distributed.
    """
    editable = [a for a in job.monthly_allocations if a.allocation_type != ACTUAL]
    if not editable:
        return job
    summary = calculate_summary(job)
    empty_revenue = [a for a in editable if a.allocated_revenue == 0]
    empty_cost = [a for a in editable if a.allocated_cost == 0]
    revenue_share = summary.remaining_revenue / len(empty_revenue) if empty_revenue and summary.remaining_revenue > 0 else 0.0
    cost_share = summary.remaining_cost / len(empty_cost) if empty_cost and summary.remaining_cost > 0 else 0.0

    job = copy.deepcopy(job)
    now = _now()
    for a in job.monthly_allocations:
        if a.allocation_type == ACTUAL:
            continue
        if a.allocated_revenue == 0:
            a.allocated_revenue = revenue_share
        if a.allocated_cost == 0:
            a.allocated_cost = cost_share
        a.last_updated = now
    return _touched(job, job.monthly_allocations)


# ---------- editor state ----------

class AllocationEditor:
    """Form state for editing one job's monthly allocations.

    ``inputs`` holds raw text per month and field while the user types.
    It is transient: committing a field clears its text, and changing the
    view (mode or fiscal year) throws all of it away because the month
    set on screen changes with it.
    """

    def __init__(self, job: AllocationJob, view_mode: str = VIEW_FISCAL_YEAR,
                 fiscal_year: Optional[int] = None, today: Optional[date] = None,
                 user: Optional[str] = None):
        if view_mode not in VIEW_MODES:
            raise ValueError(f"unknown view mode {view_mode!r}")
        self.view_mode = view_mode
        self.fiscal_year = fiscal_year if fiscal_year is not None else fiscal_year_of(today or date.today())
        self.user = user
        self.inputs: Dict[str, Dict[str, str]] = {}
        self.unsaved_changes = False
        self.job = self._initialize(job)

    def _initialize(self, job: AllocationJob) -> AllocationJob:
        if self.view_mode == VIEW_FISCAL_YEAR:
            return initialize_fiscal_year_allocations(job, self.fiscal_year)
        return initialize_job_duration_allocations(job)

    # view
    def set_view_mode(self, view_mode: str) -> None:
        if view_mode not in VIEW_MODES:
            raise ValueError(f"unknown view mode {view_mode!r}")
        self.view_mode = view_mode
        self.job = self._initialize(self.job)
        self.inputs = {}

    def set_fiscal_year(self, fiscal_year: int) -> None:
        self.fiscal_year = fiscal_year
        self.job = self._initialize(self.job)
        self.inputs = {}

    @property
    def visible_months(self) -> List[str]:
        if self.view_mode == VIEW_FISCAL_YEAR:
            return fiscal_year_overlap_months(self.job, self.fiscal_year)
        return job_duration_months(self.job)

    @property
    def visible_allocations(self) -> List[MonthlyAllocation]:
        months = set(self.visible_months)
        return [a for a in self.job.monthly_allocations if a.month in months]

    @property
    def summary(self) -> AllocationSummary:
        return calculate_summary(self.job)

    @property
    def status(self) -> str:
        return allocation_status(self.job)

    # inputs
    def input_value(self, month: str, field_name: str) -> str:
        return self.inputs.get(month, {}).get(field_name, "")

    def _set_input(self, month: str, field_name: str, text: str) -> None:
        self.inputs.setdefault(month, {})[field_name] = text

    def display_value(self, month: str, field_name: str) -> str:
        _check_field(field_name)
        raw = self.input_value(month, field_name)
        if raw:
            return raw
        row = self.job.allocation(month)
        return format_number_with_commas(row.value(field_name) if row else 0)

    def change_input(self, month: str, field_name: str, text: str) -> None:
        _check_field(field_name)
        self._set_input(month, field_name, text)

    def blur(self, month: str, field_name: str) -> UpdateResult:
        """Parse and commit the typed text; on rejection put the committed value back."""
        _check_field(field_name)
        raw = self.input_value(month, field_name)
        if not raw:
            return UpdateResult(success=True, job=self.job)
        row = self.job.allocation(month)
        update = AllocationUpdate(
            month=month,
            allocation_type=row.allocation_type if row else PROJECTION,
            **{field_name: parse_formatted_number(raw)},
        )
        result = update_monthly_allocation(self.job, update, self.visible_months, updated_by=self.user)
        if result.success:
            self.job = result.job
            self.unsaved_changes = True
            self._set_input(month, field_name, "")
        else:
            self._set_input(month, field_name, format_number_with_commas(row.value(field_name) if row else 0))
        return result

    def set_allocation_type(self, month: str, allocation_type: str) -> UpdateResult:
        row = self.job.allocation(month)
        if row is None:
            return UpdateResult(success=False, errors=[MONTH_NOT_AVAILABLE])
        update = AllocationUpdate(month=month, revenue=row.allocated_revenue, cost=row.allocated_cost,
                                  allocation_type=allocation_type)
        result = update_monthly_allocation(self.job, update, self.visible_months, updated_by=self.user)
        if result.success:
            self.job = result.job
            self.unsaved_changes = True
        return result

    # bulk operations
    def _bulk(self, job: AllocationJob) -> None:
        self.job = job
        self.unsaved_changes = True
        self.inputs = {}

    def straight_line(self) -> None:
        self._bulk(apply_straight_line(self.job, exclude_actuals=True))

    def clear_projections(self) -> None:
        self._bulk(clear_projections(self.job))

    def distribute_remaining(self) -> None:
        self._bulk(distribute_remaining(self.job))

    def save(self) -> AllocationJob:
        self.unsaved_changes = False
        return self.job


def _check_field(field_name: str) -> None:
    if field_name not in FIELDS:
        raise ValueError(f"unknown allocation field {field_name!r}")
