from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from femisse import models
from femisse.services.user_sessions import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    unit_price_cents: int
    category: str | None = None

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass
class CouponQuote:
    coupon: models.Coupon
    subtotal_cents: int
    applicable_subtotal_cents: int
    discount_cents: int
    applicable_product_ids: list[str] = field(default_factory=list)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def load_json_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    return [str(item) for item in data if item is not None and str(item).strip()]


def dump_json_list(values: Iterable[str] | None) -> str | None:
    cleaned = [str(value).strip() for value in (values or []) if str(value).strip()]
    return json.dumps(cleaned, ensure_ascii=False) if cleaned else None


def _coupon_error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"valid": False, "error": error, "message": message})


def _percent_of(amount_cents: int, percent: int) -> int:
    value = Decimal(amount_cents) * Decimal(percent) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def applicable_lines(coupon: models.Coupon, lines: list[CartLine]) -> list[CartLine]:
    if coupon.scope == models.CouponScope.storewide.value:
        return list(lines)
    if coupon.scope == models.CouponScope.category.value:
        categories = {name.strip().lower() for name in load_json_list(coupon.applicable_categories_json)}
        if not categories:
            raise _coupon_error(400, "Configuração inválida", "Cupom de categoria sem categorias configuradas")
        return [line for line in lines if line.category and line.category.strip().lower() in categories]
    if coupon.scope == models.CouponScope.product.value:
        product_ids = set(load_json_list(coupon.applicable_products_json))
        if not product_ids:
            raise _coupon_error(400, "Configuração inválida", "Cupom de produto sem produtos configurados")
        return [line for line in lines if line.product_id in product_ids]
    raise _coupon_error(400, "Tipo inválido", "Escopo de cupom desconhecido")


def calculate_discount(coupon: models.Coupon, lines: list[CartLine]) -> tuple[int, int]:
    """Returns (applicable subtotal, discount) in cents, discount clamped to [0, subtotal]."""
    subtotal = sum(line.total_cents for line in lines)
    eligible = applicable_lines(coupon, lines)
    applicable_subtotal = sum(line.total_cents for line in eligible)

    if coupon.discount_type == models.CouponType.percentage.value:
        discount = _percent_of(applicable_subtotal, coupon.discount_value)
    elif coupon.discount_type == models.CouponType.fixed.value:
        discount = min(coupon.discount_value, applicable_subtotal)
    else:
        raise _coupon_error(400, "Tipo inválido", "Tipo de desconto desconhecido")

    discount = max(0, min(discount, subtotal))
    return applicable_subtotal, discount


def user_usage_count(db: Session, coupon_id: str, user_id: str) -> int:
    return (
        db.query(func.count(models.CouponUsage.id))
        .filter(models.CouponUsage.coupon_id == coupon_id, models.CouponUsage.user_id == user_id)
        .scalar()
        or 0
    )


def get_coupon_by_code(db: Session, code: str) -> models.Coupon | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.query(models.Coupon).filter(models.Coupon.code == normalized).first()


def validate_coupon(
    db: Session,
    *,
    code: str,
    user_id: str,
    lines: list[CartLine],
    check_usage: bool = True,
) -> CouponQuote:
    """Validates a coupon against a cart, in the order the storefront reports errors."""
    coupon = get_coupon_by_code(db, code)
    if coupon is None:
        raise _coupon_error(404, "Cupom inválido", "Cupom não encontrado")
    if not coupon.is_active:
        raise _coupon_error(400, "Cupom inativo", "Este cupom não está mais ativo")

    now = utc_now()
    valid_from = as_utc(coupon.valid_from)
    valid_to = as_utc(coupon.valid_to)
    if valid_from and now < valid_from:
        raise _coupon_error(400, "Cupom ainda não válido", "Este cupom ainda não pode ser utilizado")
    if valid_to and now > valid_to:
        raise _coupon_error(400, "Cupom expirado", "Este cupom expirou")

    if check_usage:
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            raise _coupon_error(400, "Cupom esgotado", "Este cupom atingiu o limite de usos")
        per_user = coupon.max_uses_per_user or 1
        if user_usage_count(db, coupon.id, user_id) >= per_user:
            raise _coupon_error(400, "Limite de uso atingido", "Você já utilizou este cupom")

    subtotal = sum(line.total_cents for line in lines)
    if coupon.min_purchase_cents and subtotal < coupon.min_purchase_cents:
        raise _coupon_error(
            400,
            "Valor mínimo não atingido",
            f"Este cupom requer uma compra mínima de R$ {coupon.min_purchase_cents / 100:.2f}",
        )

    eligible = applicable_lines(coupon, lines)
    if not eligible:
        raise _coupon_error(400, "Cupom não aplicável", "Nenhum item do carrinho é elegível para este cupom")

    applicable_subtotal, discount = calculate_discount(coupon, lines)
    return CouponQuote(
        coupon=coupon,
        subtotal_cents=subtotal,
        applicable_subtotal_cents=applicable_subtotal,
        discount_cents=discount,
        applicable_product_ids=[line.product_id for line in eligible],
    )


def register_coupon_usage(
    db: Session,
    *,
    coupon: models.Coupon,
    user_id: str,
    order_id: str | None,
    discount_cents: int,
) -> models.CouponUsage:
    usage = models.CouponUsage(
        id=str(uuid.uuid4()),
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        discount_cents=discount_cents,
        used_at=utc_now(),
    )
    db.add(usage)
    coupon.used_count = (coupon.used_count or 0) + 1
    logger.info("Coupon usage registered code=%s order=%s", coupon.code, order_id)
    return usage


def list_active_coupons(db: Session) -> list[models.Coupon]:
    now = utc_now()
    coupons = (
        db.query(models.Coupon)
        .filter(models.Coupon.is_active.is_(True))
        .order_by(models.Coupon.created_at.desc())
        .all()
    )
    result = []
    for coupon in coupons:
        valid_from = as_utc(coupon.valid_from)
        valid_to = as_utc(coupon.valid_to)
        if valid_from and valid_from > now:
            continue
        if valid_to and valid_to < now:
            continue
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            continue
        result.append(coupon)
    return result


def user_coupon_history(db: Session, user_id: str) -> list[tuple[models.CouponUsage, models.Coupon]]:
    return (
        db.query(models.CouponUsage, models.Coupon)
        .join(models.Coupon, models.Coupon.id == models.CouponUsage.coupon_id)
        .filter(models.CouponUsage.user_id == user_id)
        .order_by(models.CouponUsage.used_at.desc())
        .all()
    )


def create_coupon(db: Session, *, data: dict, created_by: str | None) -> models.Coupon:
    code = normalize_code(data.get("code"))
    if db.query(models.Coupon.id).filter(models.Coupon.code == code).first():
        raise HTTPException(status_code=409, detail={"error": "Código já existe", "message": "Já existe um cupom com este código"})
    coupon = models.Coupon(
        id=str(uuid.uuid4()),
        code=code,
        description=data.get("description"),
        discount_type=data["discount_type"],
        discount_value=data["discount_value"],
        scope=data["scope"],
        applicable_categories_json=dump_json_list(data.get("applicable_categories")),
        applicable_products_json=dump_json_list(data.get("applicable_products")),
        min_purchase_cents=data.get("min_purchase_cents") or 0,
        max_uses=data.get("max_uses"),
        max_uses_per_user=data.get("max_uses_per_user") or 1,
        is_active=data.get("is_active", True),
        valid_from=data.get("valid_from"),
        valid_to=data.get("valid_to"),
        created_by=created_by,
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


def update_coupon(db: Session, *, coupon_id: str, data: dict) -> models.Coupon:
    coupon = db.query(models.Coupon).filter(models.Coupon.id == coupon_id).first()
    if coupon is None:
        raise HTTPException(status_code=404, detail={"error": "Cupom não encontrado", "message": "Cupom não encontrado"})
    if "code" in data and data["code"] is not None:
        code = normalize_code(data.pop("code"))
        clash = (
            db.query(models.Coupon.id)
            .filter(models.Coupon.code == code, models.Coupon.id != coupon.id)
            .first()
        )
        if clash:
            raise HTTPException(status_code=409, detail={"error": "Código já existe", "message": "Já existe um cupom com este código"})
        coupon.code = code
    if "applicable_categories" in data:
        coupon.applicable_categories_json = dump_json_list(data.pop("applicable_categories"))
    if "applicable_products" in data:
        coupon.applicable_products_json = dump_json_list(data.pop("applicable_products"))
    for key, value in data.items():
        setattr(coupon, key, value)
    db.commit()
    db.refresh(coupon)
    return coupon


def delete_coupon(db: Session, *, coupon_id: str) -> None:
    coupon = db.query(models.Coupon).filter(models.Coupon.id == coupon_id).first()
    if coupon is None:
        raise HTTPException(status_code=404, detail={"error": "Cupom não encontrado", "message": "Cupom não encontrado"})
    db.delete(coupon)
    db.commit()
