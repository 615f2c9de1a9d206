from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from forecasting import crud, models, schemas
from forecasting.db import get_db
from forecasting.errors import NotFoundError
from forecasting.navigation import navigation_for
from forecasting.permissions import require_permission
from forecasting.routers import audit_context

router = APIRouter(prefix="/api", tags=["admin"])


# -------------------------
# Audit log
# -------------------------
@router.get("/audit-logs", response_model=schemas.AuditList)
def list_audit_logs(limit: int = Query(100, ge=1, le=1000), resource: Optional[str] = None,
                    user_id: Optional[int] = None,
                    admin: models.User = Depends(require_permission("audit.list")), db: Session = Depends(get_db)):
    return {"logs": crud.list_logs(db, limit, resource, user_id)}


# -------------------------
# System config
# -------------------------
@router.get("/config", response_model=schemas.ConfigList)
def list_config(admin: models.User = Depends(require_permission("config.manage")), db: Session = Depends(get_db)):
    return {"config": crud.list_config(db)}


@router.get("/config/{key}", response_model=schemas.ConfigEnvelope)
def get_config(key: str, admin: models.User = Depends(require_permission("config.manage")),
               db: Session = Depends(get_db)):
    row = crud.get_config(db, key)
    if row is None:
        raise NotFoundError(f"Config key '{key}' not found")
    return {"config": row}


@router.put("/config/{key}", response_model=schemas.ConfigEnvelope)
def set_config(key: str, config_in: schemas.ConfigIn, request: Request,
               admin: models.User = Depends(require_permission("config.manage")), db: Session = Depends(get_db)):
    return {"config": crud.set_config(db, key, config_in, audit_context(request, admin))}


@router.delete("/config/{key}", response_model=schemas.Message)
def delete_config(key: str, request: Request,
                  admin: models.User = Depends(require_permission("config.manage")), db: Session = Depends(get_db)):
    row = crud.get_config(db, key)
    if row is None:
        raise NotFoundError(f"Config key '{key}' not found")
    crud.delete_config(db, row, audit_context(request, admin))
    return {"message": "Config deleted"}


# -------------------------
# Navigation
# -------------------------
@router.get("/navigation", response_model=schemas.NavigationOut)
def navigation(path: Optional[str] = None, user: models.User = Depends(require_permission("navigation.view"))):
    return {"navigation": navigation_for(user.role, path), "user": user}
