"""
Authentication & authorization helpers.
Password hashing, bearer token issue/verify, and the FastAPI dependencies
that gate routes to signed-in users and admins.
"""
import os
import uuid
import logging
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext

from schemas import User

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def create_token(user: User) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "is_admin": user.is_admin,
        "jti": uuid.uuid4().hex,
        "exp": now + timedelta(minutes=JWT_EXPIRES_MIN),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_storage(request: Request):
    return request.app.state.storage


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    storage=Depends(get_storage),
) -> dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = decode_token(credentials.credentials)
    if storage.is_token_revoked(payload.get("jti", "")):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return payload


def get_current_user(
    payload: dict = Depends(get_token_payload),
    storage=Depends(get_storage),
) -> User:
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = storage.get_user(uid)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        logger.warning("Admin route refused", extra={"user_id": user.id})
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
