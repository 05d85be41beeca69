from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user, require_admin
from femisse.db import get_db
from femisse.services import orders as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: schemas.OrderCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return order_service.create_order(db, user=user, payload=payload)


@router.get("/me", response_model=list[schemas.OrderOut])
def list_my_orders(
    status_filter: models.OrderStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return order_service.list_user_orders(
        db,
        user,
        status=status_filter.value if status_filter else None,
        limit=limit,
        page=page,
    )


@router.get("", response_model=list[schemas.OrderOut])
def list_orders(
    status_filter: models.OrderStatus | None = Query(default=None, alias="status"),
    payment_status: models.PaymentStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    return order_service.list_all_orders(
        db,
        status=status_filter.value if status_filter else None,
        payment_status=payment_status.value if payment_status else None,
        limit=limit,
        page=page,
    )


@router.get("/{order_id}", response_model=schemas.OrderOut)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return order_service.get_order_for_user(db, order_id, user)


@router.patch("/{order_id}", response_model=schemas.OrderOut)
def update_order(
    order_id: str,
    payload: schemas.OrderUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    return order_service.update_order(db, order_id=order_id, payload=payload)


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    order_id: str,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    order_service.delete_order(db, order_id=order_id)
