"""
Role-based access rules.

Every guarded operation is named here with the set of roles allowed to
perform it. Routes declare the operation they implement:

    @router.delete("/{user_id}")
    def delete_user(user_id: int, admin: models.User = Depends(require_permission("users.delete")), ...):
        ...

Ownership and segment rules that depend on the record being touched are
checked in the route handlers with ``ensure_segment_access`` /
``ensure_owner_or_admin``.
"""

import structlog
from fastapi import Depends

from forecasting import models
from forecasting.auth import get_current_user
from forecasting.errors import AuthorizationError
from forecasting.models import Role

logger = structlog.get_logger()

ALL_ROLES = frozenset(Role)
MANAGERS = frozenset({Role.ADMIN, Role.EXECUTIVE, Role.VP_DIRECTOR})
ADMIN_ONLY = frozenset({Role.ADMIN})

OPERATION_ROLES: dict[str, frozenset] = {
    "users.list": frozenset({Role.ADMIN, Role.EXECUTIVE}),
    "users.create": ADMIN_ONLY,
    "users.update": ADMIN_ONLY,
    "users.delete": ADMIN_ONLY,
    "periods.list": ALL_ROLES,
    "periods.create": ADMIN_ONLY,
    "periods.update": ADMIN_ONLY,
    "periods.delete": ADMIN_ONLY,
    "forecasts.list": ALL_ROLES,
    "forecasts.create": ALL_ROLES,
    "forecasts.update": ALL_ROLES,
    "forecasts.delete": ALL_ROLES,
    "forecasts.submit": ALL_ROLES,
    "forecasts.review": MANAGERS,
    "projects.list": ALL_ROLES,
    "projects.create": ALL_ROLES,
    "projects.update": ALL_ROLES,
    "projects.delete": ALL_ROLES,
    "reports.list": ALL_ROLES,
    "reports.executive": MANAGERS,
    "reports.segment": ALL_ROLES,
    "reports.export": ALL_ROLES,
    "reports.delete": ADMIN_ONLY,
    "audit.list": ADMIN_ONLY,
    "config.manage": ADMIN_ONLY,
    "navigation.view": ALL_ROLES,
}

# roles that see every forecast regardless of owner or segment
UNRESTRICTED_ROLES = frozenset({Role.ADMIN, Role.EXECUTIVE})


def is_allowed(role: Role, operation: str) -> bool:
    return role in OPERATION_ROLES[operation]


def require_permission(operation: str):
    """Dependency factory: resolve the principal, then check the role table."""
    if operation not in OPERATION_ROLES:
        raise KeyError(f"unknown operation {operation!r}")

    def checker(user: models.User = Depends(get_current_user)) -> models.User:
        if not is_allowed(user.role, operation):
            logger.warning("permission_denied", user_id=user.id, role=user.role.value, operation=operation)
            raise AuthorizationError()
        return user

    checker.__name__ = f"require_{operation.replace('.', '_')}"
    return checker


def ensure_segment_access(user: models.User, segment) -> None:
    if not user.has_segment(segment):
        segment_value = models.MarketSegment(segment).value
        raise AuthorizationError(f"Access denied. User not assigned to {segment_value} market segment.")


def ensure_owner_or_admin(user: models.User, owner_id: int) -> None:
    if user.role != Role.ADMIN and user.id != owner_id:
        raise AuthorizationError("Access denied. You can only modify your own forecasts.")


def can_view_forecast(user: models.User, forecast: models.Forecast) -> bool:
    if user.role in UNRESTRICTED_ROLES or forecast.user_id == user.id:
        return True
    if user.role == Role.VP_DIRECTOR:
        return user.has_segment(forecast.market_segment)
    return False


def can_view_report(user: models.User, report: models.Report) -> bool:
    """Stored reports are readable by whoever could have generated them."""
    if report.type == "EXECUTIVE":
        return is_allowed(user.role, "reports.executive")
    if report.type == "SEGMENT":
        segment = (report.data or {}).get("segment")
        return segment is not None and user.has_segment(segment)
    return True
