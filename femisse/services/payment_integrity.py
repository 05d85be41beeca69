"""Conferência de integridade antes de cobrar.

Subtotal, desconto e total são recalculados a partir das linhas gravadas
do pedido. O valor enviado pelo cliente só é aceito se bater com o
recálculo (tolerância de 2 centavos) e o valor cobrado é sempre o
recalculado.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from fastapi import HTTPException
from sqlalchemy.orm import Session

from femisse import models
from femisse.services.coupons import CartLine, calculate_discount

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE_CENTS = 2
APPROVED_PAYMENT_STATUSES = {"approved", "authorized"}


@dataclass(frozen=True)
class OrderTotals:
    subtotal_cents: int
    discount_cents: int
    shipping_cents: int
    total_cents: int


@dataclass(frozen=True)
class AdjustedItem:
    product_id: str
    title: str
    quantity: int
    unit_price_cents: int


def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def order_cart_lines(db: Session, order: models.Order) -> list[CartLine]:
    product_ids = {item.product_id for item in order.items}
    categories = dict(
        db.query(models.Product.id, models.Category.name)
        .outerjoin(models.Category, models.Category.id == models.Product.category_id)
        .filter(models.Product.id.in_(product_ids))
        .all()
    ) if product_ids else {}
    return [
        CartLine(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            category=categories.get(item.product_id),
        )
        for item in order.items
    ]


def recompute_order_totals(db: Session, order: models.Order) -> OrderTotals:
    if not order.items:
        raise HTTPException(status_code=400, detail={"error": "ORDER_EMPTY", "message": "Itens do pedido não encontrados"})

    lines = order_cart_lines(db, order)
    subtotal = sum(line.total_cents for line in lines)

    discount = 0
    if order.coupon_id:
        coupon = db.query(models.Coupon).filter(models.Coupon.id == order.coupon_id).first()
        if coupon is not None:
            _, discount = calculate_discount(coupon, lines)
        else:
            discount = max(0, min(order.discount_cents or 0, subtotal))

    shipping = max(0, order.shipping_cents or 0)
    return OrderTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        shipping_cents=shipping,
        total_cents=subtotal - discount + shipping,
    )


def ensure_order_payable(db: Session, order: models.Order | None, user: models.User) -> models.Order:
    if order is None or order.user_id != user.id:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    if order.status == models.OrderStatus.cancelled.value:
        raise HTTPException(status_code=409, detail={"error": "ORDER_CANCELLED", "message": "Pedido cancelado"})
    if order.payment_status != models.PaymentStatus.pending.value:
        raise HTTPException(
            status_code=409,
            detail={"error": "ORDER_NOT_PENDING", "message": "Pedido não está aguardando pagamento"},
        )
    approved = (
        db.query(models.Payment.id)
        .filter(
            models.Payment.order_id == order.id,
            models.Payment.status.in_(APPROVED_PAYMENT_STATUSES),
        )
        .first()
    )
    if approved:
        raise HTTPException(
            status_code=409,
            detail={"error": "ALREADY_PAID", "message": "Já existe um pagamento aprovado para este pedido"},
        )
    return order


def verify_payment_amount(db: Session, order: models.Order, submitted_amount) -> OrderTotals:
    totals = recompute_order_totals(db, order)

    if abs((order.total_cents or 0) - totals.total_cents) > AMOUNT_TOLERANCE_CENTS:
        logger.warning(
            "Order total diverges from items order=%s stored=%s recomputed=%s",
            order.id,
            order.total_cents,
            totals.total_cents,
        )
        raise HTTPException(
            status_code=409,
            detail={"error": "ORDER_TAMPERED", "message": "Total do pedido inconsistente"},
        )

    submitted_cents = to_cents(submitted_amount)
    if abs(submitted_cents - totals.total_cents) > AMOUNT_TOLERANCE_CENTS:
        logger.warning(
            "Payment amount mismatch order=%s submitted=%s expected=%s",
            order.id,
            submitted_cents,
            totals.total_cents,
        )
        raise HTTPException(
            status_code=400,
            detail={"error": "AMOUNT_MISMATCH", "message": "Valor do pagamento não confere com o pedido"},
        )
    return totals


def adjusted_items(items: list[models.OrderItem], discount_cents: int) -> list[AdjustedItem]:
    """Spreads the discount over unit prices.

    The items always sum to ``subtotal - discount``. When the rounding
    remainder does not divide evenly by the last line's quantity, that line
    is split and a single unit carries what is left.
    """
    raw_subtotal = sum(item.quantity * item.unit_price_cents for item in items)
    discounted = max(0, raw_subtotal - discount_cents)
    if raw_subtotal <= 0:
        return [AdjustedItem(i.product_id, i.product_name, i.quantity, i.unit_price_cents) for i in items]

    factor = Decimal(discounted) / Decimal(raw_subtotal)
    result: list[AdjustedItem] = []
    running = 0
    for item in items:
        unit = int((Decimal(item.unit_price_cents) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        running += unit * item.quantity
        result.append(AdjustedItem(item.product_id, item.product_name, item.quantity, unit))

    diff = discounted - running
    if result and diff:
        last = result.pop()
        per_unit, remainder = divmod(diff, last.quantity)
        unit = last.unit_price_cents + per_unit
        if remainder == 0:
            result.append(AdjustedItem(last.product_id, last.title, last.quantity, unit))
        else:
            result.append(AdjustedItem(last.product_id, last.title, last.quantity - 1, unit))
            result.append(AdjustedItem(last.product_id, last.title, 1, unit + remainder))
    return result
