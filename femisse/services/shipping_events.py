from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session, selectinload

from femisse import models
from femisse.services.orders import apply_order_status, invalidate_order_caches
from femisse.services.user_sessions import utc_now

logger = logging.getLogger(__name__)

LABEL_STATUS_BY_EVENT = {
    "order.released": models.ShippingLabelStatus.released.value,
    "order.generated": models.ShippingLabelStatus.generated.value,
    "order.posted": models.ShippingLabelStatus.posted.value,
    "order.delivered": models.ShippingLabelStatus.delivered.value,
    "order.cancelled": models.ShippingLabelStatus.cancelled.value,
    "order.canceled": models.ShippingLabelStatus.cancelled.value,
    "order.expired": models.ShippingLabelStatus.expired.value,
    "order.pending": models.ShippingLabelStatus.pending.value,
}

# pedido não volta de status mais avançado
_ORDER_PROGRESS = [
    models.OrderStatus.pending.value,
    models.OrderStatus.processing.value,
    models.OrderStatus.shipped.value,
    models.OrderStatus.delivered.value,
]


@dataclass
class ShippingEventResult:
    event: models.ShippingEvent
    label_found: bool


def _advance_order(db: Session, order_id: str, target: str) -> None:
    order = (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.id == order_id)
        .first()
    )
    if order is None or order.status == models.OrderStatus.cancelled.value:
        return
    if _ORDER_PROGRESS.index(order.status) >= _ORDER_PROGRESS.index(target):
        return
    apply_order_status(db, order, status=target)
    invalidate_order_caches(order.id, order.user_id)


def _apply_event(db: Session, label: models.ShippingLabel, event_type: str, data: dict) -> None:
    now = utc_now()
    status = LABEL_STATUS_BY_EVENT.get(event_type)
    if status:
        label.status = status
    label.tracking_code = data.get("tracking") or data.get("self_tracking") or label.tracking_code
    label.tracking_url = data.get("tracking_url") or label.tracking_url
    label.protocol = data.get("protocol") or label.protocol

    if event_type == "order.released":
        label.payment_status = "paid"
        label.paid_at = label.paid_at or now
    elif event_type == "order.generated":
        label.generated_at = label.generated_at or now
    elif event_type == "order.posted":
        label.posted_at = label.posted_at or now
        _advance_order(db, label.order_id, models.OrderStatus.shipped.value)
    elif event_type == "order.delivered":
        label.delivered_at = label.delivered_at or now
        _advance_order(db, label.order_id, models.OrderStatus.delivered.value)
    elif event_type in ("order.cancelled", "order.canceled"):
        label.cancelled_at = label.cancelled_at or now
    elif event_type == "order.pending":
        label.payment_status = "pending"


def process_shipping_event(
    db: Session, *, payload: dict, signature: str | None
) -> ShippingEventResult:
    """Registra o evento do MelhorEnvio e aplica seus efeitos na etiqueta e no pedido.

    Não faz commit; o webhook confirma junto com o registro anti-replay.
    """
    event_type = payload["event"]
    data = payload["data"]
    me_order_id = str(data["id"])

    label = (
        db.query(models.ShippingLabel)
        .filter(models.ShippingLabel.melhorenvio_order_id == me_order_id)
        .first()
    )
    event = models.ShippingEvent(
        id=str(uuid.uuid4()),
        shipping_label_id=label.id if label else None,
        event_type=event_type,
        status=data.get("status"),
        melhorenvio_order_id=me_order_id,
        tracking_code=data.get("tracking") or data.get("self_tracking"),
        payload_json=json.dumps(payload, default=str),
        signature=signature,
        processed=False,
    )
    db.add(event)

    if label is None:
        event.error_message = "Etiqueta não encontrada"
        logger.warning("Shipping webhook for unknown label me_order=%s event=%s", me_order_id, event_type)
        return ShippingEventResult(event=event, label_found=False)

    _apply_event(db, label, event_type, data)
    db.add(
        models.MelhorEnvioLog(
            id=str(uuid.uuid4()),
            user_id=label.user_id,
            order_id=label.order_id,
            operation="webhook_processed",
            status="success",
            message=f"Evento {event_type} processado",
        )
    )
    event.processed = True
    event.processed_at = utc_now()
    logger.info("Shipping webhook processed label=%s event=%s", label.id, event_type)
    return ShippingEventResult(event=event, label_found=True)


def list_label_events(db: Session, label_id: str) -> list[models.ShippingEvent]:
    return (
        db.query(models.ShippingEvent)
        .filter(models.ShippingEvent.shipping_label_id == label_id)
        .order_by(models.ShippingEvent.created_at.asc())
        .all()
    )
