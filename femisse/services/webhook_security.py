"""Verificação de webhooks (Mercado Pago e Melhor Envio).

Assinaturas comparadas com ``hmac.compare_digest``. Sem segredo
configurado a verificação falha fechada. A proteção contra replay usa a
tabela ``webhook_processed_ids`` com janela de 30 minutos e falha aberta
se o banco estiver indisponível.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import ipaddress
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from femisse import models
from femisse.db import settings
from femisse.security import sha256_hex
from femisse.services.user_sessions import utc_now

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300
REPLAY_WINDOW_MINUTES = 30
RECORD_RETENTION_HOURS = 24

PROVIDER_MERCADO_PAGO = "mercadopago"
PROVIDER_MELHOR_ENVIO = "melhorenvio"

MERCADO_PAGO_NETWORKS = (
    "209.225.49.0/24",
    "216.33.197.0/24",
    "216.33.196.0/24",
    "209.225.48.0/24",
)
MELHOR_ENVIO_NETWORKS: tuple[str, ...] = ()


class WebhookSecretMissing(RuntimeError):
    pass


@dataclass(frozen=True)
class WebhookVerification:
    valid: bool
    reason: str = ""

    @classmethod
    def ok(cls) -> "WebhookVerification":
        return cls(True)

    @classmethod
    def fail(cls, reason: str) -> "WebhookVerification":
        return cls(False, reason)


def parse_mercado_pago_signature(header: str | None) -> tuple[str, str] | None:
    """``ts=1704908010,v1=618c8534...`` -> ("1704908010", "618c8534...")."""
    if not header:
        return None
    parts: dict[str, str] = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip().lower()] = value.strip()
    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        return None
    return ts, v1


def _timestamp_seconds(ts: str) -> int | None:
    try:
        value = int(ts)
    except ValueError:
        return None
    if value > 10**12:
        value //= 1000
    return value


def mercado_pago_manifest(data_id: str | None, request_id: str | None, ts: str) -> str:
    parts = []
    if data_id:
        normalized = str(data_id)
        if normalized.isalnum():
            normalized = normalized.lower()
        parts.append(f"id:{normalized};")
    if request_id:
        parts.append(f"request-id:{request_id};")
    parts.append(f"ts:{ts};")
    return "".join(parts)


def verify_mercado_pago_signature(
    *,
    signature_header: str | None,
    request_id: str | None,
    data_id: str | None,
    secret: str | None = None,
    now: float | None = None,
) -> WebhookVerification:
    secret = secret if secret is not None else settings.mercado_pago_webhook_secret
    if not secret:
        raise WebhookSecretMissing("MERCADO_PAGO_WEBHOOK_SECRET not configured")
    if not signature_header:
        return WebhookVerification.fail("Missing x-signature header")
    if not request_id:
        return WebhookVerification.fail("Missing x-request-id header")

    parsed = parse_mercado_pago_signature(signature_header)
    if parsed is None:
        return WebhookVerification.fail("Malformed signature")
    ts, received = parsed

    ts_seconds = _timestamp_seconds(ts)
    if ts_seconds is None:
        return WebhookVerification.fail("Malformed signature")
    current = int(now if now is not None else time.time())
    if abs(current - ts_seconds) > SIGNATURE_TOLERANCE_SECONDS:
        return WebhookVerification.fail("Timestamp expired")

    manifest = mercado_pago_manifest(data_id, request_id, ts)
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, received.lower()):
        return WebhookVerification.fail("Invalid signature")
    return WebhookVerification.ok()


def verify_melhor_envio_signature(
    raw_body: bytes,
    signature: str | None,
    *,
    secret: str | None = None,
) -> WebhookVerification:
    secret = secret if secret is not None else settings.melhorenvio_webhook_secret
    if not secret:
        raise WebhookSecretMissing("MELHORENVIO_WEBHOOK_SECRET not configured")
    if not signature:
        return WebhookVerification.fail("Missing x-me-signature header")

    digest = hmac.new(secret.encode(), raw_body, hashlib.sha256).digest()
    received = signature.strip()
    if received.lower().startswith("sha256="):
        received = received.split("=", 1)[1]
    if hmac.compare_digest(digest.hex(), received.lower()):
        return WebhookVerification.ok()
    if hmac.compare_digest(base64.b64encode(digest).decode(), received):
        return WebhookVerification.ok()
    return WebhookVerification.fail("Invalid signature")


def is_allowed_webhook_ip(provider: str, ip: str | None) -> bool:
    if not settings.is_production:
        return True
    networks = MERCADO_PAGO_NETWORKS if provider == PROVIDER_MERCADO_PAGO else MELHOR_ENVIO_NETWORKS
    if not networks:
        return True
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return any(address in ipaddress.ip_network(network) for network in networks)


def webhook_hash(provider: str, webhook_id: str) -> str:
    return sha256_hex(f"{provider}:{webhook_id}")


def check_webhook_replay(
    db: Session,
    *,
    provider: str,
    webhook_id: str,
    webhook_type: str | None = None,
) -> WebhookVerification:
    """Registra o webhook como visto. Duplicado dentro da janela -> inválido.

    O registro só é persistido quando o chamador fizer commit, assim uma
    falha no processamento permite que o remetente tente de novo.
    """
    digest = webhook_hash(provider, webhook_id)
    now = utc_now()
    cutoff = now - timedelta(minutes=REPLAY_WINDOW_MINUTES)
    try:
        existing = (
            db.query(models.ProcessedWebhook)
            .filter(models.ProcessedWebhook.webhook_hash == digest)
            .first()
        )
        if existing is not None:
            seen_recently = (
                db.query(models.ProcessedWebhook.id)
                .filter(
                    models.ProcessedWebhook.id == existing.id,
                    models.ProcessedWebhook.created_at >= cutoff,
                )
                .first()
            )
            if seen_recently:
                logger.warning(
                    "Webhook replay detected provider=%s hash=%s", provider, digest[:16]
                )
                return WebhookVerification.fail("Duplicate webhook")
            existing.created_at = now
            existing.webhook_type = webhook_type
        else:
            db.add(
                models.ProcessedWebhook(
                    id=str(uuid.uuid4()),
                    webhook_hash=digest,
                    provider=provider,
                    webhook_type=webhook_type,
                    created_at=now,
                )
            )
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning("Webhook replay detected (concurrent) provider=%s hash=%s", provider, digest[:16])
        return WebhookVerification.fail("Duplicate webhook")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Replay check failed; accepting webhook provider=%s", provider)
    return WebhookVerification.ok()


def clean_old_webhook_records(db: Session, older_than_hours: int = RECORD_RETENTION_HOURS) -> int:
    cutoff = utc_now() - timedelta(hours=older_than_hours)
    deleted = (
        db.query(models.ProcessedWebhook)
        .filter(models.ProcessedWebhook.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info("Old webhook records cleaned removed=%s", deleted)
    return deleted
