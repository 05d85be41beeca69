from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy.orm import Session

from femisse import models
from femisse.cache import cache_delete, invalidate_set

logger = logging.getLogger(__name__)

PRODUCTS_LIST_KEYS_SET = "cache:products:list-keys"


def product_detail_cache_key(product_id: str) -> str:
    return f"cache:products:detail:{product_id}"


class StockReservationError(Exception):
    def __init__(self, message: str, *, code: str = "STOCK_RESERVATION_ERROR", product_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.product_id = product_id


@dataclass
class StockLine:
    product_id: str
    quantity: int
    color: str | None
    size: str | None


def _comparable(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip().lower()
    return cleaned or None


def load_variants(product: models.Product) -> list[dict]:
    return [variant for variant in product.variants if isinstance(variant, dict)]


def aggregate_lines(items: Iterable) -> list[StockLine]:
    grouped: dict[tuple, StockLine] = {}
    for item in items:
        quantity = int(item.quantity)
        if quantity <= 0:
            raise StockReservationError(
                "Quantidade inválida para item do pedido.", code="INVALID_QUANTITY", product_id=item.product_id
            )
        key = (item.product_id, _comparable(item.variant_color), _comparable(item.variant_size))
        if key in grouped:
            grouped[key].quantity += quantity
        else:
            grouped[key] = StockLine(item.product_id, quantity, item.variant_color, item.variant_size)
    return list(grouped.values())


def _find_size_entry(variants: list[dict], color: str | None, size: str | None) -> dict | None:
    wanted_color = _comparable(color)
    wanted_size = _comparable(size)
    for variant in variants:
        if wanted_color and _comparable(variant.get("color")) != wanted_color:
            continue
        for entry in variant.get("sizes") or []:
            if _comparable(entry.get("size")) == wanted_size:
                return entry
    return None


def invalidate_product_caches(*product_ids: str) -> None:
    if product_ids:
        cache_delete(*(product_detail_cache_key(product_id) for product_id in product_ids))
    invalidate_set(PRODUCTS_LIST_KEYS_SET)


def _apply(db: Session, items: Iterable, direction: int) -> None:
    lines = aggregate_lines(items)
    if not lines:
        return
    product_ids = sorted({line.product_id for line in lines})
    products = {
        product.id: product
        for product in db.query(models.Product).filter(models.Product.id.in_(product_ids)).all()
    }
    touched: dict[str, list[dict]] = {}
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise StockReservationError("Produto inválido no pedido.", code="INVALID_PRODUCT_ID", product_id=line.product_id)
        variants = touched.get(product.id)
        if variants is None:
            variants = load_variants(product)
        if not variants:
            continue
        if not line.size:
            raise StockReservationError(
                "Tamanho não informado para o item do pedido.", code="MISSING_VARIANT_SIZE", product_id=product.id
            )
        entry = _find_size_entry(variants, line.color, line.size)
        if entry is None and direction > 0:
            logger.warning("Variant vanished before stock release product=%s size=%s", product.id, line.size)
            continue
        if entry is None:
            raise StockReservationError(
                f"Variação indisponível para {product.name}.", code="VARIANT_NOT_FOUND", product_id=product.id
            )
        current = int(entry.get("stock") or 0)
        if direction < 0 and current < line.quantity:
            raise StockReservationError(
                f"Estoque insuficiente para {product.name} ({line.size}).",
                code="INSUFFICIENT_STOCK",
                product_id=product.id,
            )
        entry["stock"] = current + direction * line.quantity
        touched[product.id] = variants

    for product_id, variants in touched.items():
        products[product_id].variants_json = json.dumps(variants, ensure_ascii=False)
    if touched:
        invalidate_product_caches(*touched.keys())


def reserve_stock(db: Session, items: Iterable) -> None:
    """Decrementa o estoque das variações. Nada é alterado se algum item faltar."""
    _apply(db, items, -1)


def release_stock(db: Session, items: Iterable) -> None:
    _apply(db, items, 1)
