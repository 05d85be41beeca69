"""Conversão de linhas do banco em respostas seguras para o cliente."""

from __future__ import annotations

from femisse import models, schemas
from femisse.masking import mask_card_number
from femisse.services.coupons import load_json_list

DEFAULT_REVIEW_AUTHOR = "Cliente Femisse"


def card_to_public(card: models.Card) -> schemas.CardOut:
    return schemas.CardOut(
        id=card.id,
        holder_name=card.holder_name,
        brand=card.brand,
        last_four=card.last_four,
        masked_number=mask_card_number(card.last_four),
        expiry=f"{card.expiry_month:02d}/{card.expiry_year % 100:02d}",
        is_default=card.is_default,
    )


def review_author(name: str | None) -> str:
    first = (name or "").strip().split(" ")[0]
    return first or DEFAULT_REVIEW_AUTHOR


def review_to_public(review: models.Review, user_name: str | None) -> schemas.PublicReviewOut:
    return schemas.PublicReviewOut(
        id=review.id,
        rating=review.rating,
        comment=review.comment,
        author=review_author(user_name),
        created_at=review.created_at,
    )


def coupon_to_admin(coupon: models.Coupon) -> schemas.CouponAdminOut:
    data = schemas.CouponAdminOut.model_validate(
        {
            "id": coupon.id,
            "code": coupon.code,
            "description": coupon.description,
            "discount_type": coupon.discount_type,
            "discount_value": coupon.discount_value,
            "scope": coupon.scope,
            "min_purchase_cents": coupon.min_purchase_cents,
            "valid_from": coupon.valid_from,
            "valid_to": coupon.valid_to,
            "applicable_categories": load_json_list(coupon.applicable_categories_json),
            "applicable_products": load_json_list(coupon.applicable_products_json),
            "max_uses": coupon.max_uses,
            "max_uses_per_user": coupon.max_uses_per_user,
            "used_count": coupon.used_count,
            "is_active": coupon.is_active,
            "created_at": coupon.created_at,
        }
    )
    return data


def favorite_to_public(favorite: models.Favorite, product: models.Product) -> schemas.FavoriteOut:
    return schemas.FavoriteOut(
        id=favorite.id,
        product=schemas.ProductOut.model_validate(product),
        created_at=favorite.created_at,
    )
