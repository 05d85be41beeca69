from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, selectinload

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user, require_admin
from femisse.db import get_db
from femisse.dto import coupon_to_admin
from femisse.services import coupons as coupon_service
from femisse.services.coupons import CartLine

router = APIRouter(prefix="/coupons", tags=["coupons"])


def _cart_lines(db: Session, items: list[schemas.CartItemIn]) -> list[CartLine]:
    ids = {item.product_id for item in items}
    products = {
        product.id: product
        for product in (
            db.query(models.Product)
            .options(selectinload(models.Product.category))
            .filter(models.Product.id.in_(ids), models.Product.is_active.is_(True))
            .all()
        )
    }
    lines = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise HTTPException(status_code=400, detail="Produto indisponível")
        lines.append(
            CartLine(
                product_id=product.id,
                quantity=item.quantity,
                unit_price_cents=product.price_cents,
                category=product.category.name if product.category else None,
            )
        )
    return lines


@router.post("/validate", response_model=schemas.CouponValidationOut)
def validate_coupon(
    payload: schemas.CouponValidateIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    quote = coupon_service.validate_coupon(
        db, code=payload.code, user_id=user.id, lines=_cart_lines(db, payload.items)
    )
    return schemas.CouponValidationOut(
        code=quote.coupon.code,
        description=quote.coupon.description,
        discount_type=quote.coupon.discount_type,
        scope=quote.coupon.scope,
        subtotal_cents=quote.subtotal_cents,
        discount_cents=quote.discount_cents,
        applicable_items=quote.applicable_product_ids,
    )


@router.get("/active", response_model=list[schemas.CouponPublicOut])
def list_active(db: Session = Depends(get_db)):
    return coupon_service.list_active_coupons(db)


@router.get("/history", response_model=list[schemas.CouponUsageOut])
def coupon_history(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return [
        schemas.CouponUsageOut(
            code=coupon.code,
            description=coupon.description,
            order_id=usage.order_id,
            discount_cents=usage.discount_cents,
            used_at=usage.used_at,
        )
        for usage, coupon in coupon_service.user_coupon_history(db, user.id)
    ]


@router.get("", response_model=list[schemas.CouponAdminOut])
def list_coupons(db: Session = Depends(get_db), _: models.User = Depends(require_admin)):
    coupons = db.query(models.Coupon).order_by(models.Coupon.created_at.desc()).all()
    return [coupon_to_admin(coupon) for coupon in coupons]


@router.post("", response_model=schemas.CouponAdminOut, status_code=status.HTTP_201_CREATED)
def create_coupon(
    payload: schemas.CouponIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    data = payload.model_dump()
    data["discount_type"] = payload.discount_type.value
    data["scope"] = payload.scope.value
    return coupon_to_admin(coupon_service.create_coupon(db, data=data, created_by=admin.id))


@router.patch("/{coupon_id}", response_model=schemas.CouponAdminOut)
def update_coupon(
    coupon_id: str,
    payload: schemas.CouponUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    data = payload.model_dump(exclude_unset=True)
    if payload.discount_type is not None:
        data["discount_type"] = payload.discount_type.value
    if payload.scope is not None:
        data["scope"] = payload.scope.value
    current = db.query(models.Coupon).filter(models.Coupon.id == coupon_id).first()
    if current is not None and ("discount_type" in data or "discount_value" in data):
        discount_type = data.get("discount_type") or current.discount_type
        value = data.get("discount_value") or current.discount_value
        if discount_type == models.CouponType.percentage.value and value > 100:
            raise HTTPException(status_code=400, detail="Percentual deve estar entre 1 e 100")
    return coupon_to_admin(coupon_service.update_coupon(db, coupon_id=coupon_id, data=data))


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_coupon(
    coupon_id: str,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    coupon_service.delete_coupon(db, coupon_id=coupon_id)
