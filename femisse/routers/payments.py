from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user
from femisse.db import get_db, settings
from femisse.services import payments as payment_service
from femisse.services.mercado_pago import MercadoPagoError

router = APIRouter(prefix="/payments", tags=["payments"])


def provider_http_error(exc: MercadoPagoError) -> HTTPException:
    if exc.status_code and exc.status_code < 500:
        return HTTPException(
            status_code=400,
            detail={"error": "PAYMENT_PROVIDER_REJECTED", "message": exc.message},
        )
    return HTTPException(
        status_code=502,
        detail={"error": "PAYMENT_PROVIDER_UNAVAILABLE", "message": "Serviço de pagamento indisponível"},
    )


@router.get("/public-key", response_model=schemas.PublicKeyOut)
def public_key():
    if not settings.mercado_pago_public_key:
        raise HTTPException(status_code=503, detail="Pagamentos não configurados")
    return {"public_key": settings.mercado_pago_public_key}


@router.post("/process", response_model=schemas.PaymentProcessOut)
async def process_payment(
    payload: schemas.PaymentProcessIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        payment, order = await payment_service.process_payment(db, user=user, payload=payload)
    except MercadoPagoError as exc:
        db.rollback()
        raise provider_http_error(exc) from exc
    return schemas.PaymentProcessOut(
        payment=schemas.PaymentOut.model_validate(payment),
        order_status=order.status,
        payment_status=order.payment_status,
    )


@router.post("/preference", response_model=schemas.PreferenceOut)
async def create_preference(
    payload: schemas.PaymentPreferenceIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return await payment_service.create_payment_preference(db, user=user, payload=payload)
    except MercadoPagoError as exc:
        db.rollback()
        raise provider_http_error(exc) from exc


@router.get("/order/{order_id}/pending", response_model=schemas.PaymentOut)
def pending_payment(
    order_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return payment_service.get_pending_payment(db, user=user, order_id=order_id)


@router.get("/{payment_id}/status", response_model=schemas.PaymentOut)
async def payment_status(
    payment_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return await payment_service.get_payment_status(db, user=user, payment_id=payment_id)
