# app/core/security.py
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt, JWTError
from passlib.context import CryptContext

from app.core.config import settings
from app.schemas.user import TokenData

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
REFRESH_TOKEN_EXPIRE_DAYS = 7


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _encode(data: dict, token_type: str, expires: timedelta) -> str:
    claims = dict(data)
    claims.update({"exp": datetime.utcnow() + expires, "type": token_type})
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    return _encode(data, ACCESS_TOKEN_TYPE, timedelta(minutes=minutes))


def create_refresh_token(data: dict, expires_days: int = REFRESH_TOKEN_EXPIRE_DAYS) -> str:
    return _encode(data, REFRESH_TOKEN_TYPE, timedelta(days=expires_days))


def _decode(token: str, expected_type: str) -> TokenData:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return TokenData()
    # a refresh token must not authenticate requests and vice versa
    if payload.get("type") != expected_type:
        return TokenData()
    return TokenData(
        username=payload.get("sub"),
        role=payload.get("role"),
        token_type=payload.get("type"),
    )


def decode_access_token(token: str) -> TokenData:
    return _decode(token, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> TokenData:
    return _decode(token, REFRESH_TOKEN_TYPE)
