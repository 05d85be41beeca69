import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from femisse.db import get_db
from femisse.observability import client_ip
from femisse.services.mercado_pago import MercadoPagoError
from femisse.services.payments import handle_payment_notification
from femisse.services.webhook_security import (
    PROVIDER_MERCADO_PAGO,
    WebhookSecretMissing,
    check_webhook_replay,
    is_allowed_webhook_ip,
    verify_mercado_pago_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments/webhook", tags=["payments-webhook"])

PAYMENT_TOPICS = {"payment"}


def parse_json_body(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return payload


@router.post("")
async def mercado_pago_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_signature: str | None = Header(default=None, alias="x-signature"),
    x_request_id: str | None = Header(default=None, alias="x-request-id"),
):
    payload = parse_json_body(await request.body())
    ip = client_ip(request)
    if not is_allowed_webhook_ip(PROVIDER_MERCADO_PAGO, ip):
        # modo soft: o Mercado Pago não publica uma lista fechada de IPs
        logger.warning("Mercado Pago webhook from unexpected ip=%s", ip)

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    data_id = request.query_params.get("data.id") or data.get("id")
    data_id = str(data_id) if data_id is not None else None

    try:
        verification = verify_mercado_pago_signature(
            signature_header=x_signature,
            request_id=x_request_id,
            data_id=data_id,
        )
    except WebhookSecretMissing as exc:
        logger.error("Mercado Pago webhook rejected: %s", exc)
        raise HTTPException(status_code=500, detail="Webhook secret not configured") from exc
    if not verification.valid:
        logger.warning("Mercado Pago webhook signature rejected ip=%s reason=%s", ip, verification.reason)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=verification.reason)

    topic = payload.get("type") or payload.get("topic") or request.query_params.get("type")
    if topic not in PAYMENT_TOPICS:
        return {"received": True, "ignored": True}
    if not data_id:
        raise HTTPException(status_code=400, detail="Payload do webhook inválido")

    notification_id = str(payload.get("id") or x_request_id)
    replay = check_webhook_replay(
        db,
        provider=PROVIDER_MERCADO_PAGO,
        webhook_id=notification_id,
        webhook_type=topic,
    )
    if not replay.valid:
        logger.info("Mercado Pago webhook replay ignored id=%s", notification_id)
        return {"received": True, "duplicate": True}

    try:
        await handle_payment_notification(db, data_id)
    except MercadoPagoError as exc:
        db.rollback()
        logger.error("Mercado Pago webhook processing failed payment=%s: %s", data_id, exc.message)
        raise HTTPException(status_code=502, detail="Falha ao consultar pagamento") from exc
    db.commit()
    return {"received": True}
