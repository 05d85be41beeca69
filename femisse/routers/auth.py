import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import AUTH_COOKIE, decode_token_payload, extract_token, get_current_user
from femisse.db import get_db, settings
from femisse.masking import mask_email
from femisse.security import create_access_token, hash_password, verify_password
from femisse.services.user_sessions import create_user_session, revoke_user_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _token_response(user: models.User, *, session_id: str, expires_at: datetime) -> schemas.TokenOut:
    expires_minutes = settings.access_token_expire_minutes
    token = create_access_token(
        {"sub": user.id, "role": user.role, "sid": session_id},
        expires_minutes=expires_minutes,
    )
    return schemas.TokenOut(
        access_token=token,
        user=schemas.UserOut.model_validate(user),
        expires_in_seconds=expires_minutes * 60,
        expires_at=expires_at,
    )


def _set_auth_cookie(response: Response, token: str, *, max_age_seconds: int):
    response.set_cookie(
        key=AUTH_COOKIE,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=max_age_seconds,
        path="/",
    )


def _start_session(db: Session, response: Response, user: models.User) -> schemas.TokenOut:
    session_id, expires_at = create_user_session(db, user=user, ttl_minutes=settings.session_expire_minutes)
    db.commit()
    db.refresh(user)
    token = _token_response(user, session_id=session_id, expires_at=expires_at)
    _set_auth_cookie(response, token.access_token, max_age_seconds=token.expires_in_seconds)
    return token


@router.post("/register", response_model=schemas.TokenOut, status_code=status.HTTP_201_CREATED)
def register(payload: schemas.RegisterIn, response: Response, db: Session = Depends(get_db)):
    email = normalize_email(payload.email)
    if db.query(models.User).filter(func.lower(models.User.email) == email).first():
        raise HTTPException(status_code=409, detail="E-mail já cadastrado")
    if payload.cpf and db.query(models.User).filter(models.User.cpf == payload.cpf).first():
        raise HTTPException(status_code=409, detail="CPF já cadastrado")

    user = models.User(
        id=str(uuid.uuid4()),
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        cpf=payload.cpf,
        phone=payload.phone,
        birth_date=payload.birth_date,
        role=models.UserRole.customer.value,
    )
    db.add(user)
    db.flush()
    logger.info("User registered email=%s", mask_email(email))
    return _start_session(db, response, user)


@router.post("/login", response_model=schemas.TokenOut)
def login(payload: schemas.LoginIn, response: Response, db: Session = Depends(get_db)):
    email = normalize_email(payload.email)
    user = db.query(models.User).filter(func.lower(models.User.email) == email).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        logger.warning("Login failed email=%s", mask_email(email))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciais inválidas")
    return _start_session(db, response, user)


@router.get("/me", response_model=schemas.UserOut)
def me(user: models.User = Depends(get_current_user)):
    return user


@router.post("/logout")
def logout(
    response: Response,
    db: Session = Depends(get_db),
    authorization: str | None = Header(default=None, alias="Authorization"),
    token_cookie: str | None = Cookie(default=None, alias=AUTH_COOKIE),
):
    token = extract_token(authorization, token_cookie)
    payload = decode_token_payload(token) if token else None
    if payload and payload.get("sub") and payload.get("sid"):
        revoke_user_session(
            db,
            user_id=str(payload["sub"]),
            session_id=str(payload["sid"]),
            reason="logout",
        )
        db.commit()
    response.delete_cookie(AUTH_COOKIE, path="/")
    return {"ok": True}
