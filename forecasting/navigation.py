"""Sidebar navigation for the web client, filtered by role."""

from dataclasses import dataclass
from typing import List, Optional

from forecasting.models import Role
from forecasting.permissions import ALL_ROLES, OPERATION_ROLES


@dataclass(frozen=True)
class NavEntry:
    name: str
    href: str
    icon: str
    roles: frozenset


NAVIGATION = (
    NavEntry("Dashboard", "/dashboard", "home", ALL_ROLES),
    NavEntry("Jobs", "/projects", "folder", OPERATION_ROLES["projects.list"]),
    NavEntry("Forecasts", "/forecasts", "chart-bar", OPERATION_ROLES["forecasts.list"]),
    NavEntry("Reports", "/reports", "document-text", OPERATION_ROLES["reports.list"]),
    NavEntry("Users", "/users", "users", OPERATION_ROLES["users.list"]),
)


def navigation_for(role: Role, current_path: Optional[str] = None) -> List[dict]:
    return [
        {"name": e.name, "href": e.href, "icon": e.icon, "active": current_path == e.href}
        for e in NAVIGATION
        if role in e.roles
    ]
