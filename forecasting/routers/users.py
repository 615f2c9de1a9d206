from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from forecasting import crud, models, schemas
from forecasting.db import get_db
from forecasting.errors import DuplicateFieldError, ValidationError
from forecasting.models import Role
from forecasting.permissions import require_permission
from forecasting.routers import audit_context

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=schemas.UserList)
def list_users(role: Optional[Role] = None, is_active: Optional[bool] = None,
               viewer: models.User = Depends(require_permission("users.list")), db: Session = Depends(get_db)):
    return {"users": crud.list_users(db, role, is_active)}


@router.get("/{user_id}", response_model=schemas.UserEnvelope)
def get_user(user_id: int, viewer: models.User = Depends(require_permission("users.list")), db: Session = Depends(get_db)):
    return {"user": crud.get_or_404(db, models.User, user_id, "User")}


@router.post("", response_model=schemas.UserEnvelope, status_code=201)
def create_user(user_in: schemas.UserCreate, request: Request,
                admin: models.User = Depends(require_permission("users.create")), db: Session = Depends(get_db)):
    if crud.get_user_by_email(db, user_in.email):
        raise DuplicateFieldError("email")
    return {"user": crud.create_user(db, user_in, audit_context(request, admin))}


@router.put("/{user_id}", response_model=schemas.UserEnvelope)
def update_user(user_id: int, user_in: schemas.UserUpdate, request: Request,
                admin: models.User = Depends(require_permission("users.update")), db: Session = Depends(get_db)):
    user = crud.get_or_404(db, models.User, user_id, "User")
    if user.id == admin.id and user_in.is_active is False:
        raise ValidationError("You cannot deactivate your own account", field="is_active", value=False)
    return {"user": crud.update_user(db, user, user_in, audit_context(request, admin))}


@router.post("/{user_id}/deactivate", response_model=schemas.UserEnvelope)
def deactivate_user(user_id: int, request: Request,
                    admin: models.User = Depends(require_permission("users.update")), db: Session = Depends(get_db)):
    user = crud.get_or_404(db, models.User, user_id, "User")
    if user.id == admin.id:
        raise ValidationError("You cannot deactivate your own account", field="id", value=user_id)
    return {"user": crud.set_user_active(db, user, False, audit_context(request, admin))}


@router.post("/{user_id}/restore", response_model=schemas.UserEnvelope)
def restore_user(user_id: int, request: Request,
                 admin: models.User = Depends(require_permission("users.update")), db: Session = Depends(get_db)):
    user = crud.get_or_404(db, models.User, user_id, "User")
    return {"user": crud.set_user_active(db, user, True, audit_context(request, admin))}


@router.delete("/{user_id}", response_model=schemas.Message)
def delete_user(user_id: int, request: Request,
                admin: models.User = Depends(require_permission("users.delete")), db: Session = Depends(get_db)):
    user = crud.get_or_404(db, models.User, user_id, "User")
    if user.id == admin.id:
        raise ValidationError("You cannot delete your own account", field="id", value=user_id)
    crud.delete_user(db, user, audit_context(request, admin))
    return {"message": "User deleted"}
