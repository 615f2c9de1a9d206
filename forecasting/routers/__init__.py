from typing import Optional

from fastapi import Request

from forecasting import models
from forecasting.crud import AuditContext


def audit_context(request: Request, user: Optional[models.User] = None) -> AuditContext:
    return AuditContext(
        actor_id=user.id if user is not None else None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
