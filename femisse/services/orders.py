from __future__ import annotations

import json
import logging
import secrets
import uuid
from datetime import datetime, timedelta

from fastapi import HTTPException
from sqlalchemy.orm import Session, selectinload

from femisse import models, schemas
from femisse.cache import cache_add_to_set, cache_delete, cache_get, cache_set, hash_params, invalidate_set
from femisse.documents import normalize_zip_code
from femisse.services.coupons import CartLine, validate_coupon
from femisse.services.inventory import StockReservationError, release_stock, reserve_stock
from femisse.services.user_sessions import utc_now

logger = logging.getLogger(__name__)

MAX_ITEMS = 50
MAX_QUANTITY = 100
MAX_ORDER_TOTAL_CENTS = 5_000_000

USER_LIST_TTL = 120
DETAIL_TTL = 180
ADMIN_LIST_TTL = 120
ADMIN_LIST_SET = "cache:orders:admin:set"

CANCELLATION_PAYMENT_STATUSES = {
    models.PaymentStatus.failed.value,
    models.PaymentStatus.cancelled.value,
    models.PaymentStatus.expired.value,
    models.PaymentStatus.refunded.value,
}


def _gen_id() -> str:
    return str(uuid.uuid4())


def generate_order_number(now: datetime | None = None) -> str:
    now = now or utc_now()
    suffix = "".join(secrets.choice("ABCDEFGHJKLMNPQRSTUVWXYZ23456789") for _ in range(4))
    return f"FEM-{now:%Y%m%d-%H%M%S}-{suffix}"


def user_list_set_key(user_id: str) -> str:
    return f"cache:orders:user:set:{user_id}"


def user_list_cache_key(user_id: str, params: dict) -> str:
    return f"cache:orders:user:{user_id}:{hash_params(params)}"


def detail_cache_key(order_id: str) -> str:
    return f"cache:orders:detail:{order_id}"


def admin_list_cache_key(params: dict) -> str:
    return f"cache:orders:admin:{hash_params(params)}"


def invalidate_order_caches(order_id: str | None, user_id: str | None) -> None:
    if order_id:
        cache_delete(detail_cache_key(order_id))
    if user_id:
        invalidate_set(user_list_set_key(user_id))
    invalidate_set(ADMIN_LIST_SET)


def serialize_order(order: models.Order) -> dict:
    return schemas.OrderOut.model_validate(order).model_dump(mode="json")


def _load_order(db: Session, order_id: str) -> models.Order | None:
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.id == order_id)
        .first()
    )


def get_order_for_user(db: Session, order_id: str, user: models.User) -> dict:
    key = detail_cache_key(order_id)
    cached = cache_get(key)
    if cached is not None and (user.is_admin or cached.get("user_id") == user.id):
        return cached

    order = _load_order(db, order_id)
    if order is None or (order.user_id != user.id and not user.is_admin):
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    data = serialize_order(order)
    cache_set(key, data, DETAIL_TTL)
    return data


def list_user_orders(db: Session, user: models.User, *, status: str | None, limit: int, page: int) -> list[dict]:
    params = {"status": status, "limit": limit, "page": page}
    key = user_list_cache_key(user.id, params)
    cached = cache_get(key)
    if cached is not None:
        return cached

    query = (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.user_id == user.id)
    )
    if status:
        query = query.filter(models.Order.status == status)
    orders = query.order_by(models.Order.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    data = [serialize_order(order) for order in orders]
    cache_set(key, data, USER_LIST_TTL)
    cache_add_to_set(user_list_set_key(user.id), key, USER_LIST_TTL)
    return data


def list_all_orders(
    db: Session,
    *,
    status: str | None,
    payment_status: str | None,
    limit: int,
    page: int,
) -> list[dict]:
    params = {"status": status, "payment_status": payment_status, "limit": limit, "page": page}
    key = admin_list_cache_key(params)
    cached = cache_get(key)
    if cached is not None:
        return cached

    query = db.query(models.Order).options(selectinload(models.Order.items))
    if status:
        query = query.filter(models.Order.status == status)
    if payment_status:
        query = query.filter(models.Order.payment_status == payment_status)
    orders = query.order_by(models.Order.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    data = [serialize_order(order) for order in orders]
    cache_set(key, data, ADMIN_LIST_TTL)
    cache_add_to_set(ADMIN_LIST_SET, key, ADMIN_LIST_TTL)
    return data


def _address_snapshot(address: models.Address) -> str:
    return json.dumps(
        {
            "label": address.label,
            "zip_code": address.zip_code,
            "street": address.street,
            "number": address.number,
            "complement": address.complement,
            "neighborhood": address.neighborhood,
            "city": address.city,
            "state": address.state,
        },
        ensure_ascii=False,
    )


def create_order(db: Session, *, user: models.User, payload: schemas.OrderCreate) -> models.Order:
    if not payload.items:
        raise HTTPException(status_code=400, detail="Pedido sem itens")
    if len(payload.items) > MAX_ITEMS:
        raise HTTPException(status_code=400, detail=f"Máximo de {MAX_ITEMS} itens por pedido")

    product_ids = {item.product_id for item in payload.items}
    products = {
        product.id: product
        for product in (
            db.query(models.Product)
            .options(selectinload(models.Product.category))
            .filter(models.Product.id.in_(product_ids), models.Product.is_active.is_(True))
            .all()
        )
    }
    missing = product_ids - set(products)
    if missing:
        raise HTTPException(status_code=400, detail="Produto indisponível")

    address = (
        db.query(models.Address)
        .filter(models.Address.id == payload.address_id, models.Address.user_id == user.id)
        .first()
    )
    if address is None:
        raise HTTPException(status_code=400, detail="Endereço inválido")

    quote = (
        db.query(models.ShippingQuote)
        .filter(models.ShippingQuote.id == payload.shipping_quote_id, models.ShippingQuote.user_id == user.id)
        .first()
    )
    if quote is None:
        raise HTTPException(status_code=400, detail="Cotação de frete inválida")
    if normalize_zip_code(quote.to_zip_code) != normalize_zip_code(address.zip_code):
        raise HTTPException(status_code=400, detail="Cotação de frete não corresponde ao endereço")

    order_id = _gen_id()
    items: list[models.OrderItem] = []
    lines: list[CartLine] = []
    for position, item in enumerate(payload.items):
        product = products[item.product_id]
        items.append(
            models.OrderItem(
                id=_gen_id(),
                order_id=order_id,
                product_id=product.id,
                product_name=product.name,
                position=position,
                quantity=item.quantity,
                unit_price_cents=product.price_cents,
                variant_color=item.variant_color,
                variant_size=item.variant_size,
            )
        )
        lines.append(
            CartLine(
                product_id=product.id,
                quantity=item.quantity,
                unit_price_cents=product.price_cents,
                category=product.category.name if product.category else None,
            )
        )

    subtotal = sum(line.total_cents for line in lines)
    discount = 0
    coupon = None
    if payload.coupon_code:
        quote_result = validate_coupon(db, code=payload.coupon_code, user_id=user.id, lines=lines)
        coupon = quote_result.coupon
        discount = quote_result.discount_cents

    shipping = max(0, quote.price_cents - (quote.discount_cents or 0))
    total = subtotal - discount + shipping
    if total > MAX_ORDER_TOTAL_CENTS:
        raise HTTPException(status_code=400, detail="Valor total excede o limite permitido")

    try:
        reserve_stock(db, items)
    except StockReservationError as exc:
        raise HTTPException(
            status_code=409,
            detail={"error": exc.code, "message": exc.message, "product_id": exc.product_id},
        ) from exc

    order = models.Order(
        id=order_id,
        order_number=generate_order_number(),
        user_id=user.id,
        address_id=address.id,
        shipping_address_json=_address_snapshot(address),
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
        shipping_quote_id=quote.id,
        shipping_service=quote.service_name,
        subtotal_cents=subtotal,
        shipping_cents=shipping,
        discount_cents=discount,
        total_cents=total,
        status=models.OrderStatus.pending.value,
        payment_status=models.PaymentStatus.pending.value,
        payment_method=payload.payment_method.value if payload.payment_method else None,
        notes=payload.notes,
        created_at=utc_now(),
    )
    order.items = items
    db.add(order)
    db.commit()
    db.refresh(order)
    invalidate_order_caches(order.id, user.id)
    logger.info("Order created order=%s number=%s total=%s", order.id, order.order_number, total)
    return order


def apply_order_status(
    db: Session,
    order: models.Order,
    *,
    status: str | None = None,
    payment_status: str | None = None,
) -> models.Order:
    """Transições de status; cancelamento devolve o estoque uma única vez."""
    now = utc_now()
    if payment_status and payment_status != order.payment_status:
        order.payment_status = payment_status
        if payment_status == models.PaymentStatus.paid.value and order.paid_at is None:
            order.paid_at = now
    if status and status != order.status:
        order.status = status
        if status == models.OrderStatus.delivered.value:
            order.completed_at = now
        elif status == models.OrderStatus.cancelled.value:
            order.cancelled_at = now

    cancelled = (
        order.status == models.OrderStatus.cancelled.value
        or order.payment_status in CANCELLATION_PAYMENT_STATUSES
    )
    if cancelled and not order.stock_released:
        release_stock(db, order.items)
        order.stock_released = True
        logger.info("Stock released for cancelled order=%s", order.id)
    return order


def update_order(db: Session, *, order_id: str, payload: schemas.OrderUpdate) -> models.Order:
    order = _load_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    apply_order_status(
        db,
        order,
        status=payload.status.value if payload.status else None,
        payment_status=payload.payment_status.value if payload.payment_status else None,
    )
    if payload.notes is not None:
        order.notes = payload.notes
    db.commit()
    db.refresh(order)
    invalidate_order_caches(order.id, order.user_id)
    return order


def delete_order(db: Session, *, order_id: str) -> None:
    order = _load_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    if not order.stock_released and order.payment_status != models.PaymentStatus.paid.value:
        release_stock(db, order.items)
    user_id = order.user_id
    db.delete(order)
    db.commit()
    invalidate_order_caches(order_id, user_id)


def expire_pending_orders(db: Session, *, older_than_minutes: int) -> int:
    cutoff = utc_now() - timedelta(minutes=older_than_minutes)
    orders = (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(
            models.Order.payment_method == models.PaymentMethod.pix.value,
            models.Order.payment_status == models.PaymentStatus.pending.value,
            models.Order.status == models.OrderStatus.pending.value,
            models.Order.created_at < cutoff,
        )
        .all()
    )
    for order in orders:
        apply_order_status(
            db,
            order,
            status=models.OrderStatus.cancelled.value,
            payment_status=models.PaymentStatus.expired.value,
        )
    if orders:
        db.commit()
        for order in orders:
            invalidate_order_caches(order.id, order.user_id)
        logger.info("Expired pending PIX orders count=%s", len(orders))
    return len(orders)
