import structlog
from fastapi import APIRouter, Depends, Request
from jose import JWTError
from sqlalchemy.orm import Session

from forecasting import auth, crud, models, schemas
from forecasting.db import get_db
from forecasting.errors import AuthenticationError
from forecasting.routers import audit_context

logger = structlog.get_logger()

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=schemas.LoginResponse)
def login(data: schemas.LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = auth.authenticate_user(db, data.email, data.password)
    user = crud.touch_last_login(db, user, audit_context(request, user))
    logger.info("login", user_id=user.id, role=user.role.value)
    return {**auth.create_token_pair(user), "user": user}


@router.post("/refresh", response_model=schemas.TokenPair)
def refresh(data: schemas.RefreshRequest, db: Session = Depends(get_db)):
    try:
        payload = auth.decode_token(data.refresh_token, "refresh")
    except JWTError:
        raise AuthenticationError("Invalid refresh token.", code="INVALID_REFRESH_TOKEN")
    user = db.get(models.User, payload["id"])
    if user is None or not user.is_active:
        raise AuthenticationError("Invalid refresh token.", code="INVALID_REFRESH_TOKEN")
    return auth.create_token_pair(user)


@router.post("/logout", response_model=schemas.Message)
def logout(request: Request, user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    # tokens are stateless; the client drops them
    crud.record_audit(db, audit_context(request, user), "logout", "user", user.id)
    crud.commit(db)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=schemas.UserEnvelope)
def me(user: models.User = Depends(auth.get_current_user)):
    return {"user": user}
