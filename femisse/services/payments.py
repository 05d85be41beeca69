from __future__ import annotations

import logging
import time
import uuid
from datetime import timedelta

from fastapi import HTTPException
from sqlalchemy.orm import Session, selectinload

from femisse import models, schemas
from femisse.db import settings
from femisse.masking import mask_email
from femisse.services import mercado_pago
from femisse.services.coupons import register_coupon_usage
from femisse.services.inventory import StockReservationError, reserve_stock
from femisse.services.orders import apply_order_status, invalidate_order_caches
from femisse.services.payment_integrity import (
    AMOUNT_TOLERANCE_CENTS,
    adjusted_items,
    ensure_order_payable,
    to_cents,
    verify_payment_amount,
)
from femisse.services.user_sessions import utc_now

logger = logging.getLogger(__name__)

PREFERENCE_EXPIRATION_MINUTES = 30
CARD_METHODS = {models.PaymentMethod.credit_card, models.PaymentMethod.debit_card}

# status do Mercado Pago -> (payment_status do pedido, status do pedido)
STATUS_MAP: dict[str, tuple[str, str | None]] = {
    "approved": (models.PaymentStatus.paid.value, models.OrderStatus.processing.value),
    "authorized": (models.PaymentStatus.pending.value, None),
    "pending": (models.PaymentStatus.pending.value, None),
    "in_process": (models.PaymentStatus.pending.value, None),
    "in_mediation": (models.PaymentStatus.pending.value, None),
    "rejected": (models.PaymentStatus.failed.value, models.OrderStatus.cancelled.value),
    "cancelled": (models.PaymentStatus.cancelled.value, models.OrderStatus.cancelled.value),
    "expired": (models.PaymentStatus.expired.value, models.OrderStatus.cancelled.value),
    "refunded": (models.PaymentStatus.refunded.value, models.OrderStatus.cancelled.value),
    "charged_back": (models.PaymentStatus.refunded.value, models.OrderStatus.cancelled.value),
}


def map_provider_status(provider_status: str | None) -> tuple[str, str | None]:
    return STATUS_MAP.get((provider_status or "").lower(), (models.PaymentStatus.pending.value, None))


def _load_order(db: Session, order_id: str) -> models.Order | None:
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.id == order_id)
        .first()
    )


def _revive_late_payment(db: Session, order: models.Order) -> bool:
    """Pagamento aprovado num pedido já cancelado: reserva o estoque de novo."""
    try:
        reserve_stock(db, order.items)
    except StockReservationError as exc:
        logger.error(
            "Late payment on cancelled order without stock order=%s code=%s product=%s",
            order.id,
            exc.code,
            exc.product_id,
        )
        return False
    order.stock_released = False
    order.cancelled_at = None
    logger.warning("Cancelled order revived by late payment order=%s", order.id)
    return True


def apply_provider_status(db: Session, order: models.Order, provider_status: str | None) -> models.Order:
    payment_status, order_status = map_provider_status(provider_status)
    if order.payment_status == models.PaymentStatus.paid.value and payment_status == models.PaymentStatus.pending.value:
        return order
    if payment_status == models.PaymentStatus.paid.value and order.stock_released:
        if not _revive_late_payment(db, order):
            # fica cancelado e pago, aguardando estorno
            apply_order_status(db, order, payment_status=payment_status)
            return order
    apply_order_status(db, order, status=order_status, payment_status=payment_status)

    if payment_status == models.PaymentStatus.paid.value and order.coupon_id and not order.coupon_usage_registered:
        coupon = db.query(models.Coupon).filter(models.Coupon.id == order.coupon_id).first()
        if coupon is not None:
            register_coupon_usage(
                db,
                coupon=coupon,
                user_id=order.user_id,
                order_id=order.id,
                discount_cents=order.discount_cents,
            )
        order.coupon_usage_registered = True
    return order


def _notification_url() -> str:
    return f"{settings.backend_url.rstrip('/')}/payments/webhook"


def _payer_payload(payer: schemas.PayerIn | None, user: models.User) -> dict:
    if payer is None:
        return {"email": user.email}
    data: dict = {"email": payer.email}
    if payer.first_name:
        data["first_name"] = payer.first_name
    if payer.last_name:
        data["last_name"] = payer.last_name
    if payer.identification:
        data["identification"] = {"type": payer.identification.type, "number": payer.identification.number}
    return data


def _pix_data(mp_payment: dict) -> dict:
    transaction = (mp_payment.get("point_of_interaction") or {}).get("transaction_data") or {}
    return {
        "pix_qr_code": transaction.get("qr_code"),
        "pix_qr_code_base64": transaction.get("qr_code_base64"),
        "ticket_url": transaction.get("ticket_url"),
    }


async def process_payment(
    db: Session, *, user: models.User, payload: schemas.PaymentProcessIn
) -> tuple[models.Payment, models.Order]:
    order = ensure_order_payable(db, _load_order(db, payload.order_id), user)
    totals = verify_payment_amount(db, order, payload.total_amount)

    if payload.payment_method in CARD_METHODS and not payload.card_token:
        raise HTTPException(status_code=400, detail="Token do cartão é obrigatório")

    body: dict = {
        "transaction_amount": totals.total_cents / 100,
        "description": f"Pedido {order.order_number}",
        "external_reference": order.id,
        "notification_url": _notification_url(),
        "payer": _payer_payload(payload.payer, user),
        "statement_descriptor": "FEMISSE",
    }
    if payload.payment_method == models.PaymentMethod.pix:
        expires = utc_now() + timedelta(minutes=settings.order_expiration_minutes)
        body["payment_method_id"] = "pix"
        body["date_of_expiration"] = expires.isoformat(timespec="milliseconds")
    else:
        body["token"] = payload.card_token
        body["installments"] = payload.installments
        if payload.payment_method_id:
            body["payment_method_id"] = payload.payment_method_id
        if payload.issuer_id:
            body["issuer_id"] = payload.issuer_id

    idempotency_key = f"{order.id}-{int(time.time() * 1000)}"
    logger.info(
        "Creating payment order=%s method=%s amount=%s payer=%s",
        order.id,
        payload.payment_method.value,
        totals.total_cents,
        mask_email(payload.payer.email),
    )
    mp_payment = await mercado_pago.create_payment(body, idempotency_key=idempotency_key)

    provider_status = mp_payment.get("status") or "pending"
    payment = models.Payment(
        id=str(uuid.uuid4()),
        order_id=order.id,
        user_id=user.id,
        mp_payment_id=str(mp_payment.get("id")) if mp_payment.get("id") else None,
        method=payload.payment_method.value,
        status=provider_status,
        status_detail=mp_payment.get("status_detail"),
        amount_cents=totals.total_cents,
        installments=payload.installments if payload.payment_method in CARD_METHODS else 1,
        approved_at=utc_now() if provider_status == "approved" else None,
        **_pix_data(mp_payment),
    )
    db.add(payment)
    order.payment_method = payload.payment_method.value
    apply_provider_status(db, order, provider_status)
    db.commit()
    db.refresh(payment)
    db.refresh(order)
    invalidate_order_caches(order.id, order.user_id)
    return payment, order


async def create_payment_preference(
    db: Session, *, user: models.User, payload: schemas.PaymentPreferenceIn
) -> dict:
    order = ensure_order_payable(db, _load_order(db, payload.order_id), user)
    totals = verify_payment_amount(db, order, payload.total_amount)

    now = utc_now()
    items = [
        {
            "id": item.product_id,
            "title": item.title,
            "quantity": item.quantity,
            "unit_price": item.unit_price_cents / 100,
            "currency_id": "BRL",
        }
        for item in adjusted_items(list(order.items), totals.discount_cents)
    ]
    body = {
        "items": items,
        "payer": _payer_payload(payload.payer, user),
        "shipments": {"cost": totals.shipping_cents / 100, "mode": "not_specified"},
        "back_urls": {
            "success": f"{settings.frontend_url}/checkout/sucesso",
            "failure": f"{settings.frontend_url}/checkout/falha",
            "pending": f"{settings.frontend_url}/checkout/pendente",
        },
        "auto_return": "approved",
        "external_reference": order.id,
        "notification_url": _notification_url(),
        "statement_descriptor": "FEMISSE",
        "expires": True,
        "expiration_date_from": now.isoformat(timespec="milliseconds"),
        "expiration_date_to": (now + timedelta(minutes=PREFERENCE_EXPIRATION_MINUTES)).isoformat(
            timespec="milliseconds"
        ),
    }
    preference = await mercado_pago.create_preference(body)

    db.add(
        models.Payment(
            id=str(uuid.uuid4()),
            order_id=order.id,
            user_id=user.id,
            mp_preference_id=preference.get("id"),
            method="checkout_pro",
            status="pending",
            amount_cents=totals.total_cents,
            checkout_url=preference.get("init_point"),
        )
    )
    db.commit()
    return {
        "preference_id": preference.get("id"),
        "init_point": preference.get("init_point"),
        "sandbox_init_point": preference.get("sandbox_init_point"),
    }


def _find_user_payment(db: Session, payment_id: str, user: models.User) -> models.Payment:
    payment = (
        db.query(models.Payment)
        .filter((models.Payment.mp_payment_id == payment_id) | (models.Payment.id == payment_id))
        .first()
    )
    if payment is None or (payment.user_id != user.id and not user.is_admin):
        raise HTTPException(status_code=404, detail="Pagamento não encontrado")
    return payment


async def get_payment_status(db: Session, *, user: models.User, payment_id: str) -> models.Payment:
    payment = _find_user_payment(db, payment_id, user)
    if not payment.mp_payment_id:
        return payment
    try:
        mp_payment = await mercado_pago.get_payment(payment.mp_payment_id)
    except mercado_pago.MercadoPagoError as exc:
        logger.warning("Payment status refresh failed payment=%s: %s", payment.id, exc.message)
        return payment

    provider_status = mp_payment.get("status")
    if provider_status and provider_status != payment.status:
        _sync_payment(db, payment, mp_payment)
        db.commit()
        db.refresh(payment)
    return payment


def get_pending_payment(db: Session, *, user: models.User, order_id: str) -> models.Payment:
    order = db.query(models.Order).filter(models.Order.id == order_id).first()
    if order is None or order.user_id != user.id:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    payment = (
        db.query(models.Payment)
        .filter(
            models.Payment.order_id == order.id,
            models.Payment.status.in_(["pending", "in_process"]),
        )
        .order_by(models.Payment.created_at.desc())
        .first()
    )
    if payment is None:
        raise HTTPException(status_code=404, detail="Nenhum pagamento pendente")
    return payment


def _sync_payment(db: Session, payment: models.Payment, mp_payment: dict) -> None:
    provider_status = mp_payment.get("status") or payment.status
    payment.status = provider_status
    payment.status_detail = mp_payment.get("status_detail")
    if provider_status == "approved" and payment.approved_at is None:
        payment.approved_at = utc_now()

    order = _load_order(db, payment.order_id)
    if order is None:
        logger.warning("Payment without order payment=%s", payment.id)
        return

    if provider_status == "approved":
        paid_cents = to_cents(mp_payment.get("transaction_amount") or 0)
        if abs(paid_cents - order.total_cents) > AMOUNT_TOLERANCE_CENTS:
            logger.error(
                "Approved amount differs from order total order=%s paid=%s expected=%s",
                order.id,
                paid_cents,
                order.total_cents,
            )
            return
    apply_provider_status(db, order, provider_status)
    invalidate_order_caches(order.id, order.user_id)


async def handle_payment_notification(db: Session, mp_payment_id: str) -> models.Payment | None:
    mp_payment = await mercado_pago.get_payment(mp_payment_id)
    order_id = mp_payment.get("external_reference")
    if not order_id:
        logger.info("Payment notification without external_reference payment=%s", mp_payment_id)
        return None

    payment = db.query(models.Payment).filter(models.Payment.mp_payment_id == str(mp_payment_id)).first()
    if payment is None:
        order = db.query(models.Order).filter(models.Order.id == order_id).first()
        if order is None:
            logger.warning("Payment notification for unknown order=%s", order_id)
            return None
        payment = models.Payment(
            id=str(uuid.uuid4()),
            order_id=order.id,
            user_id=order.user_id,
            mp_payment_id=str(mp_payment_id),
            method=mp_payment.get("payment_type_id") or "checkout_pro",
            status=mp_payment.get("status") or "pending",
            amount_cents=to_cents(mp_payment.get("transaction_amount") or 0),
            installments=mp_payment.get("installments") or 1,
        )
        db.add(payment)
        db.flush()

    _sync_payment(db, payment, mp_payment)
    logger.info("Payment notification processed payment=%s status=%s", mp_payment_id, payment.status)
    return payment
