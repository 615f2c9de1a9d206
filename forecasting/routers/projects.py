from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from forecasting import crud, models, schemas
from forecasting.db import get_db
from forecasting.errors import AuthorizationError
from forecasting.models import ProjectType
from forecasting.permissions import can_view_forecast, ensure_owner_or_admin, require_permission
from forecasting.routers import audit_context

router = APIRouter(prefix="/api/projects", tags=["projects"])


def _owned_project(db: Session, user: models.User, project_id: int) -> models.Project:
    project = crud.get_or_404(db, models.Project, project_id, "Project")
    ensure_owner_or_admin(user, project.forecast.user_id)
    return project


@router.get("", response_model=schemas.ProjectList)
def list_projects(forecast_id: Optional[int] = None, project_type: Optional[ProjectType] = Query(None, alias="type"),
                  user: models.User = Depends(require_permission("projects.list")), db: Session = Depends(get_db)):
    return {"projects": crud.list_projects(db, user, forecast_id, project_type)}


@router.get("/{project_id}", response_model=schemas.ProjectEnvelope)
def get_project(project_id: int, user: models.User = Depends(require_permission("projects.list")),
                db: Session = Depends(get_db)):
    project = crud.get_or_404(db, models.Project, project_id, "Project")
    if not can_view_forecast(user, project.forecast):
        raise AuthorizationError("Access denied. You cannot view this project.")
    return {"project": project}


@router.post("", response_model=schemas.ProjectEnvelope, status_code=201)
def create_project(project_in: schemas.ProjectCreate, request: Request,
                   user: models.User = Depends(require_permission("projects.create")),
                   db: Session = Depends(get_db)):
    forecast = crud.get_or_404(db, models.Forecast, project_in.forecast_id, "Forecast")
    ensure_owner_or_admin(user, forecast.user_id)
    return {"project": crud.create_project(db, forecast, project_in, audit_context(request, user))}


@router.put("/{project_id}", response_model=schemas.ProjectEnvelope)
def update_project(project_id: int, project_in: schemas.ProjectUpdate, request: Request,
                   user: models.User = Depends(require_permission("projects.update")),
                   db: Session = Depends(get_db)):
    project = _owned_project(db, user, project_id)
    return {"project": crud.update_project(db, project, project_in, audit_context(request, user))}


@router.delete("/{project_id}", response_model=schemas.Message)
def delete_project(project_id: int, request: Request,
                   user: models.User = Depends(require_permission("projects.delete")),
                   db: Session = Depends(get_db)):
    project = _owned_project(db, user, project_id)
    crud.delete_project(db, project, audit_context(request, user))
    return {"message": "Project deleted"}
