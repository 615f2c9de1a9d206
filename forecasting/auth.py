# forecasting/auth.py
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from dotenv import load_dotenv

from forecasting import models
from forecasting.db import get_db
from forecasting.errors import AuthenticationError

load_dotenv()

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRES_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRES_MINUTES", "480"))
REFRESH_TOKEN_EXPIRES_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRES_DAYS", "30"))

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET not set in .env")

# pbkdf2_sha256 is pure-python (provided by passlib), no bcrypt binary needed
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# auto_error=False so a missing header goes through our own error envelope
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def _encode(data: dict, token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"type": token_type, "exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(data, "access", expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRES_MINUTES))


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(data, "refresh", expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRES_DAYS))


def create_token_pair(user: models.User) -> dict:
    claims = {"id": user.id, "email": user.email, "role": user.role.value}
    return {
        "token": create_access_token(claims),
        "refresh_token": create_refresh_token({"id": user.id}),
    }


def decode_token(token: str, expected_type: str = "access") -> dict:
    """Decode and verify a token.

    Raises ``jose.ExpiredSignatureError`` / ``jose.JWTError`` untouched; the
    error handlers turn them into TOKEN_EXPIRED / INVALID_TOKEN.
    """
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    if payload.get("type") != expected_type or payload.get("id") is None:
        raise JWTError("unexpected token type")
    return payload


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> models.User:
    if not token:
        raise AuthenticationError("Access denied. No token provided.")
    payload = decode_token(token, "access")
    user = db.get(models.User, payload["id"])
    if user is None:
        raise AuthenticationError("Token is valid but user no longer exists.", code="USER_NOT_FOUND")
    if not user.is_active:
        raise AuthenticationError("User account is inactive.", code="USER_INACTIVE")
    return user


def authenticate_user(db: Session, email: str, password: str) -> models.User:
    user = db.query(models.User).filter(models.User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password.", code="INVALID_CREDENTIALS")
    # block inactive users
    if not user.is_active:
        raise AuthenticationError(
            "Your account has been deactivated. Please contact an administrator.",
            code="ACCOUNT_INACTIVE",
        )
    return user
