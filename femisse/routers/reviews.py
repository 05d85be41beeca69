import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user
from femisse.cache import cache_delete, cache_get, cache_set
from femisse.db import get_db
from femisse.dto import review_to_public

router = APIRouter(tags=["reviews"])

RATING_STATS_TTL = 300


def rating_stats_cache_key(product_id: str) -> str:
    return f"cache:reviews:stats:{product_id}"


def _own_review(db: Session, review_id: str, user: models.User) -> models.Review:
    review = (
        db.query(models.Review)
        .filter(models.Review.id == review_id, models.Review.user_id == user.id)
        .first()
    )
    if not review:
        raise HTTPException(status_code=404, detail="Avaliação não encontrada")
    return review


@router.get("/reviews/me", response_model=list[schemas.ReviewOut])
def my_reviews(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return (
        db.query(models.Review)
        .filter(models.Review.user_id == user.id)
        .order_by(models.Review.created_at.desc())
        .all()
    )


@router.get("/reviews/reviewable", response_model=list[schemas.ReviewableProductOut])
def reviewable_products(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    """Itens de pedidos entregues que ainda não foram avaliados."""
    rows = (
        db.query(models.Order, models.OrderItem)
        .join(models.OrderItem, models.OrderItem.order_id == models.Order.id)
        .filter(
            models.Order.user_id == user.id,
            models.Order.status == models.OrderStatus.delivered.value,
        )
        .order_by(models.Order.created_at.desc(), models.OrderItem.position)
        .all()
    )
    reviewed = {
        (review.order_id, review.product_id)
        for review in db.query(models.Review).filter(models.Review.user_id == user.id).all()
    }
    product_ids = {item.product_id for _, item in rows}
    images = {
        product.id: product.image_url
        for product in db.query(models.Product).filter(models.Product.id.in_(product_ids)).all()
    } if product_ids else {}

    result = []
    seen = set()
    for order, item in rows:
        key = (order.id, item.product_id)
        if key in reviewed or key in seen:
            continue
        seen.add(key)
        result.append(
            schemas.ReviewableProductOut(
                order_id=order.id,
                order_number=order.order_number,
                product_id=item.product_id,
                product_name=item.product_name,
                image_url=images.get(item.product_id),
                delivered_at=order.completed_at,
            )
        )
    return result


@router.post("/reviews", response_model=schemas.ReviewOut, status_code=status.HTTP_201_CREATED)
def create_review(
    payload: schemas.ReviewIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    purchased = (
        db.query(models.OrderItem)
        .join(models.Order, models.Order.id == models.OrderItem.order_id)
        .filter(
            models.Order.id == payload.order_id,
            models.Order.user_id == user.id,
            models.OrderItem.product_id == payload.product_id,
        )
        .first()
    )
    if not purchased:
        raise HTTPException(status_code=403, detail="Produto não pertence a um pedido seu")

    review = models.Review(
        id=str(uuid.uuid4()),
        user_id=user.id,
        product_id=payload.product_id,
        order_id=payload.order_id,
        rating=payload.rating,
        comment=payload.comment.strip() if payload.comment else None,
    )
    db.add(review)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Produto já avaliado neste pedido") from exc
    db.refresh(review)
    cache_delete(rating_stats_cache_key(review.product_id))
    return review


@router.patch("/reviews/{review_id}", response_model=schemas.ReviewOut)
def update_review(
    review_id: str,
    payload: schemas.ReviewUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    review = _own_review(db, review_id, user)
    data = payload.model_dump(exclude_unset=True)
    if data.get("rating") is not None:
        review.rating = data["rating"]
    if "comment" in data:
        review.comment = data["comment"].strip() if data["comment"] else None
    db.commit()
    db.refresh(review)
    cache_delete(rating_stats_cache_key(review.product_id))
    return review


@router.delete("/reviews/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_review(
    review_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    review = _own_review(db, review_id, user)
    product_id = review.product_id
    db.delete(review)
    db.commit()
    cache_delete(rating_stats_cache_key(product_id))


@router.get("/products/{product_id}/reviews", response_model=list[schemas.PublicReviewOut])
def product_reviews(product_id: str, db: Session = Depends(get_db)):
    rows = (
        db.query(models.Review, models.User.name)
        .join(models.User, models.User.id == models.Review.user_id)
        .filter(models.Review.product_id == product_id)
        .order_by(models.Review.created_at.desc())
        .all()
    )
    return [review_to_public(review, name) for review, name in rows]


@router.get("/products/{product_id}/rating-stats", response_model=schemas.RatingStatsOut)
def rating_stats(product_id: str, db: Session = Depends(get_db)):
    key = rating_stats_cache_key(product_id)
    cached = cache_get(key)
    if cached is not None:
        return cached

    counts = dict(
        db.query(models.Review.rating, func.count(models.Review.id))
        .filter(models.Review.product_id == product_id)
        .group_by(models.Review.rating)
        .all()
    )
    total = sum(counts.values())
    average = sum(rating * count for rating, count in counts.items()) / total if total else 0.0
    data = schemas.RatingStatsOut(
        product_id=product_id,
        average=round(average, 1),
        total=total,
        distribution={str(star): counts.get(star, 0) for star in range(1, 6)},
    ).model_dump()
    cache_set(key, data, RATING_STATS_TTL)
    return data
