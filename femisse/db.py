from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    database_url: str = Field(alias="DATABASE_URL")
    app_env: str = Field(default="development", alias="APP_ENV")

    auth_secret: str = Field(alias="AUTH_SECRET")
    auth_secret_previous: str | None = Field(default=None, alias="AUTH_SECRET_PREVIOUS")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    session_expire_minutes: int = Field(default=10080, alias="SESSION_EXPIRE_MINUTES")
    auth_algorithm: str = Field(default="HS256", alias="AUTH_ALGORITHM")

    frontend_url: str = Field(default="http://localhost:5173", alias="FRONTEND_URL")
    backend_url: str = Field(default="http://localhost:8000", alias="BACKEND_URL")

    mercado_pago_access_token: str | None = Field(default=None, alias="MERCADO_PAGO_ACCESS_TOKEN")
    mercado_pago_public_key: str | None = Field(default=None, alias="MERCADO_PAGO_PUBLIC_KEY")
    mercado_pago_webhook_secret: str | None = Field(default=None, alias="MERCADO_PAGO_WEBHOOK_SECRET")

    melhorenvio_client_id: str | None = Field(default=None, alias="MELHORENVIO_CLIENT_ID")
    melhorenvio_client_secret: str | None = Field(default=None, alias="MELHORENVIO_CLIENT_SECRET")
    melhorenvio_redirect_uri: str | None = Field(default=None, alias="MELHORENVIO_REDIRECT_URI")
    melhorenvio_access_token: str | None = Field(default=None, alias="MELHORENVIO_ACCESS_TOKEN")
    melhorenvio_webhook_secret: str | None = Field(default=None, alias="MELHORENVIO_WEBHOOK_SECRET")
    melhorenvio_sandbox: bool = Field(default=True, alias="MELHORENVIO_SANDBOX")
    melhorenvio_user_agent: str = Field(
        default="Femisse (contato@femisse.com.br)", alias="MELHORENVIO_USER_AGENT"
    )
    store_zip_code: str = Field(default="14870-390", alias="STORE_ZIP_CODE")
    store_name: str = Field(default="Femisse", alias="STORE_NAME")
    store_phone: str | None = Field(default=None, alias="STORE_PHONE")
    store_email: str | None = Field(default=None, alias="STORE_EMAIL")
    store_document: str | None = Field(default=None, alias="STORE_DOCUMENT")
    store_street: str | None = Field(default=None, alias="STORE_STREET")
    store_number: str | None = Field(default=None, alias="STORE_NUMBER")
    store_district: str | None = Field(default=None, alias="STORE_DISTRICT")
    store_city: str | None = Field(default=None, alias="STORE_CITY")
    store_state: str | None = Field(default=None, alias="STORE_STATE")

    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    order_expiration_minutes: int = Field(default=30, alias="ORDER_EXPIRATION_MINUTES")

    # Config do pydantic-settings (v2)
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",        # ignora chaves do .env que não tenham campo/alias
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    @property
    def AUTH_SECRETS_LIST(self) -> list[str]:
        secrets = [self.auth_secret]
        if self.auth_secret_previous and self.auth_secret_previous not in secrets:
            secrets.append(self.auth_secret_previous)
        return secrets

    @property
    def melhorenvio_base_url(self) -> str:
        if self.melhorenvio_sandbox:
            return "https://sandbox.melhorenvio.com.br"
        return "https://melhorenvio.com.br"

    @field_validator("auth_secret")
    @classmethod
    def validate_auth_secret(cls, value: str) -> str:
        if not value or value == "change-me" or len(value) < 32:
            raise ValueError("AUTH_SECRET must be set and at least 32 chars long")
        return value

    @field_validator("auth_secret_previous")
    @classmethod
    def validate_auth_secret_previous(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if value == "change-me" or len(value) < 32:
            raise ValueError("AUTH_SECRET_PREVIOUS must be at least 32 chars long")
        return value

    @field_validator("mercado_pago_webhook_secret", "melhorenvio_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, value: str | None) -> str | None:
        if value is not None and len(value.strip()) < 16:
            raise ValueError("Webhook secrets must be at least 16 chars long")
        return value


settings = Settings()

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


# Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
