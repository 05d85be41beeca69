import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from femisse.db import get_db
from femisse.observability import client_ip
from femisse.routers.payment_webhook import parse_json_body
from femisse.security import sha256_hex
from femisse.services.shipping_events import process_shipping_event
from femisse.services.webhook_security import (
    PROVIDER_MELHOR_ENVIO,
    WebhookSecretMissing,
    check_webhook_replay,
    is_allowed_webhook_ip,
    verify_melhor_envio_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping/webhook", tags=["shipping-webhook"])


@router.post("")
async def melhor_envio_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_me_signature: str | None = Header(default=None, alias="x-me-signature"),
):
    raw_body = await request.body()
    payload = parse_json_body(raw_body)
    ip = client_ip(request)
    if not is_allowed_webhook_ip(PROVIDER_MELHOR_ENVIO, ip):
        logger.warning("MelhorEnvio webhook from unexpected ip=%s", ip)

    try:
        verification = verify_melhor_envio_signature(raw_body, x_me_signature)
    except WebhookSecretMissing as exc:
        logger.error("MelhorEnvio webhook rejected: %s", exc)
        raise HTTPException(status_code=500, detail="Webhook secret not configured") from exc
    if not verification.valid:
        logger.warning("MelhorEnvio webhook signature rejected ip=%s reason=%s", ip, verification.reason)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=verification.reason)

    event = payload.get("event")
    data = payload.get("data")
    if not event or not isinstance(data, dict) or not data.get("id"):
        raise HTTPException(status_code=400, detail="Payload do webhook inválido")

    # o MelhorEnvio não envia id de notificação; o corpo identifica a entrega
    webhook_id = f"{event}:{data['id']}:{sha256_hex(raw_body.decode('utf-8', 'replace'))}"
    replay = check_webhook_replay(db, provider=PROVIDER_MELHOR_ENVIO, webhook_id=webhook_id, webhook_type=event)
    if not replay.valid:
        return {"received": True, "duplicate": True}

    result = process_shipping_event(db, payload=payload, signature=x_me_signature)
    db.commit()
    if not result.label_found:
        return {"received": True, "warning": "Etiqueta não encontrada"}
    return {"received": True, "processed": True}
