from typing import Callable

from fastapi import Cookie, Depends, Header, HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

from femisse import models
from femisse.db import get_db, settings
from femisse.services.user_sessions import is_user_session_active

AUTH_COOKIE = "femisse_token"


class TokenData(BaseModel):
    sub: str
    role: str
    sid: str


def extract_token(authorization: str | None, token_cookie: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    if token_cookie:
        return token_cookie
    return None


def decode_token_payload(token: str) -> dict | None:
    for secret in settings.AUTH_SECRETS_LIST:
        try:
            return jwt.decode(token, secret, algorithms=[settings.auth_algorithm])
        except JWTError:
            continue
    return None


def _decode_token(token: str) -> TokenData:
    payload = decode_token_payload(token)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    sub = payload.get("sub")
    role = payload.get("role")
    sid = payload.get("sid")
    if not sub or not role or not sid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return TokenData(sub=sub, role=role, sid=sid)


def _load_user(db: Session, token: str) -> models.User:
    token_data = _decode_token(token)
    user = (
        db.query(models.User)
        .filter(models.User.id == token_data.sub, models.User.is_active.is_(True))
        .first()
    )
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not is_user_session_active(db, user_id=user.id, session_id=token_data.sid):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired or revoked")
    return user


def get_current_user(
    db: Session = Depends(get_db),
    authorization: str | None = Header(default=None, alias="Authorization"),
    token_cookie: str | None = Cookie(default=None, alias=AUTH_COOKIE),
) -> models.User:
    token = extract_token(authorization, token_cookie)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing credentials")
    return _load_user(db, token)


def require_roles(*roles: models.UserRole) -> Callable[[models.User], models.User]:
    allowed = {role.value for role in roles}

    def dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")
        return user

    return dependency


require_admin = require_roles(models.UserRole.admin)
