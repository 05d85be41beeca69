import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user, require_admin
from femisse.db import get_db, settings
from femisse.services import melhor_envio
from femisse.services.melhor_envio import MelhorEnvioError
from femisse.services.shipping_events import list_label_events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])


def shipping_http_error(exc: MelhorEnvioError) -> HTTPException:
    if exc.status_code == 503:
        return HTTPException(status_code=503, detail=exc.message)
    if exc.status_code and exc.status_code < 500:
        return HTTPException(status_code=400, detail={"error": "SHIPPING_PROVIDER_REJECTED", "message": exc.message})
    return HTTPException(status_code=502, detail={"error": "SHIPPING_PROVIDER_UNAVAILABLE", "message": exc.message})


@router.post("/estimate", response_model=list[schemas.ShippingQuoteOut])
async def estimate_shipping(payload: schemas.ShippingCalculateIn, db: Session = Depends(get_db)):
    """Cotação pública para a página de produto, sempre com o token da loja."""
    try:
        return await melhor_envio.estimate_shipping(db, payload=payload)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc


@router.post("/calculate", response_model=list[schemas.ShippingQuoteOut])
async def calculate_shipping(
    payload: schemas.ShippingCalculateIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return await melhor_envio.calculate_shipping(db, user=user, payload=payload)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc


@router.get("/quotes", response_model=list[schemas.ShippingQuoteOut])
def list_quotes(
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return (
        db.query(models.ShippingQuote)
        .filter(models.ShippingQuote.user_id == user.id)
        .order_by(models.ShippingQuote.created_at.desc())
        .limit(limit)
        .all()
    )


# OAuth2


@router.get("/auth/authorize")
def authorize(admin: models.User = Depends(require_admin)):
    try:
        url = melhor_envio.build_authorization_url(admin.id)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc
    return {"authorization_url": url}


@router.get("/auth/callback")
async def auth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    if error:
        raise HTTPException(status_code=400, detail="Autorização negada")
    if not code:
        raise HTTPException(status_code=400, detail="Código de autorização não fornecido")
    user_id = melhor_envio.user_id_from_state(state)
    if not user_id:
        raise HTTPException(status_code=400, detail="State inválido")
    admin = db.query(models.User).filter(models.User.id == user_id).first()
    if admin is None or not admin.is_admin:
        raise HTTPException(status_code=400, detail="State inválido")
    try:
        await melhor_envio.exchange_code(db, code=code, user_id=admin.id)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc
    logger.info("MelhorEnvio authorization completed user=%s", admin.id)
    return RedirectResponse(f"{settings.frontend_url}/admin/envios?auth=success", status_code=302)


@router.get("/auth/status")
def auth_status(db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    return melhor_envio.authorization_status(db, admin.id)


# Etiquetas


@router.post("/labels", response_model=schemas.ShippingLabelOut, status_code=201)
async def create_label(
    payload: schemas.LabelCreateIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    try:
        return await melhor_envio.create_label(db, admin=admin, payload=payload)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc


@router.get("/labels", response_model=list[schemas.ShippingLabelOut])
def list_labels(
    order_id: str | None = None,
    status_filter: models.ShippingLabelStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    return melhor_envio.list_labels(
        db, order_id=order_id, status=status_filter.value if status_filter else None
    )


@router.post("/labels/generate", response_model=list[schemas.ShippingLabelOut])
async def generate_labels(
    payload: schemas.LabelIdsIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    try:
        return await melhor_envio.generate_labels(db, admin=admin, label_ids=payload.label_ids)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc


@router.post("/labels/print")
async def print_labels(
    payload: schemas.LabelIdsIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    try:
        url = await melhor_envio.print_labels(db, admin=admin, label_ids=payload.label_ids)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc
    return {"url": url}


@router.post("/labels/{label_id}/cancel", response_model=schemas.ShippingLabelOut)
async def cancel_label(
    label_id: str,
    reason: str | None = Body(default=None, embed=True, max_length=255),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    try:
        return await melhor_envio.cancel_label(db, admin=admin, label_id=label_id, reason=reason)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc


@router.get("/labels/{label_id}/track")
async def track_label(
    label_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return await melhor_envio.track_shipment(db, user=user, label_id=label_id)
    except MelhorEnvioError as exc:
        raise shipping_http_error(exc) from exc


@router.get("/labels/{label_id}/events", response_model=list[schemas.ShippingEventOut])
def label_events(
    label_id: str,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    return list_label_events(db, label_id)
