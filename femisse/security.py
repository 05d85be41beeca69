from datetime import datetime, timedelta, timezone
import hashlib
from typing import Any, Dict

from jose import jwt
from passlib.context import CryptContext

from femisse.db import settings

# Usamos bcrypt_sha256 para evitar limite de 72 bytes e aceitar hashes antigos bcrypt.
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], expires_minutes: int | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.auth_secret, algorithm=settings.auth_algorithm)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()
