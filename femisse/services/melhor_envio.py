"""Integração com a API do MelhorEnvio.

OAuth2 por usuário admin (ou token fixo da loja), cotação de frete,
carrinho de etiquetas, geração, impressão, cancelamento e rastreio.
Toda operação fica registrada em ``melhorenvio_logs``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session, selectinload

from femisse import models, schemas
from femisse.auth.dependencies import decode_token_payload
from femisse.db import settings
from femisse.documents import digits, format_zip_code
from femisse.masking import mask_cpf, mask_email, mask_phone
from femisse.security import create_access_token
from femisse.services.payment_integrity import to_cents
from femisse.services.user_sessions import as_utc, utc_now

logger = logging.getLogger(__name__)

TIMEOUTS = [30, 30, 30]
BACKOFFS = [0.5, 1.0]
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)
OAUTH_STATE_MINUTES = 10
OAUTH_STATE_PURPOSE = "melhorenvio_oauth"

SCOPES = " ".join(
    [
        "cart-read",
        "cart-write",
        "companies-read",
        "orders-read",
        "products-read",
        "purchases-read",
        "shipping-calculate",
        "shipping-cancel",
        "shipping-checkout",
        "shipping-companies",
        "shipping-generate",
        "shipping-preview",
        "shipping-print",
        "shipping-tracking",
        "notifications-read",
    ]
)

_MASKERS = {"document": mask_cpf, "email": mask_email, "phone": mask_phone}


class MelhorEnvioError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


def api_url() -> str:
    return f"{settings.melhorenvio_base_url}/api/v2"


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: (_MASKERS[key](item) if key in _MASKERS and isinstance(item, str) else _redact(item))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def _log_operation(
    db: Session,
    operation: str,
    status: str,
    *,
    user_id: str | None = None,
    order_id: str | None = None,
    message: str | None = None,
    request: Any = None,
    response: Any = None,
) -> None:
    db.add(
        models.MelhorEnvioLog(
            id=str(uuid.uuid4()),
            user_id=user_id,
            order_id=order_id,
            operation=operation,
            status=status,
            message=message,
            request_json=json.dumps(_redact(request), default=str) if request is not None else None,
            response_json=json.dumps(response, default=str) if response is not None else None,
        )
    )


def _fail(db: Session, operation: str, exc: MelhorEnvioError, **kwargs) -> MelhorEnvioError:
    _log_operation(db, operation, "error", message=exc.message, response=exc.payload, **kwargs)
    db.commit()
    return exc


def _headers(token: str | None) -> dict[str, str]:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "User-Agent": settings.melhorenvio_user_agent,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def _request(method: str, url: str, *, token: str | None = None, json_body: Any = None) -> Any:
    headers = _headers(token)
    for attempt in range(len(TIMEOUTS)):
        try:
            async with httpx.AsyncClient(timeout=TIMEOUTS[attempt]) as client:
                response = await client.request(method, url, json=json_body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("MelhorEnvio request failed url=%s attempt=%s error=%s", url, attempt + 1, exc)
            if attempt < len(BACKOFFS):
                await asyncio.sleep(BACKOFFS[attempt])
                continue
            raise MelhorEnvioError("MelhorEnvio indisponível") from exc

        if response.status_code >= 500 and attempt < len(BACKOFFS):
            await asyncio.sleep(BACKOFFS[attempt])
            continue

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"raw": response.text[:500]}
        if response.status_code >= 400:
            logger.error("MelhorEnvio error url=%s status=%s", url, response.status_code)
            message = data.get("message") if isinstance(data, dict) else None
            raise MelhorEnvioError(
                message or "Erro ao comunicar com o MelhorEnvio",
                status_code=response.status_code,
                payload=data,
            )
        return data
    raise MelhorEnvioError("MelhorEnvio indisponível")


# OAuth2


def build_authorization_url(user_id: str) -> str:
    if not settings.melhorenvio_client_id or not settings.melhorenvio_redirect_uri:
        raise MelhorEnvioError("MelhorEnvio OAuth não configurado", status_code=400)
    state = create_access_token({"sub": user_id, "purpose": OAUTH_STATE_PURPOSE}, expires_minutes=OAUTH_STATE_MINUTES)
    params = {
        "client_id": settings.melhorenvio_client_id,
        "redirect_uri": settings.melhorenvio_redirect_uri,
        "response_type": "code",
        "scope": SCOPES,
        "state": state,
    }
    return f"{settings.melhorenvio_base_url}/oauth/authorize?{urlencode(params)}"


def user_id_from_state(state: str | None) -> str | None:
    if not state:
        return None
    payload = decode_token_payload(state)
    if not payload or payload.get("purpose") != OAUTH_STATE_PURPOSE:
        return None
    return payload.get("sub")


def _store_token(db: Session, user_id: str, data: dict) -> models.MelhorEnvioToken:
    expires_at = utc_now() + timedelta(seconds=int(data.get("expires_in") or 0))
    token = db.query(models.MelhorEnvioToken).filter(models.MelhorEnvioToken.user_id == user_id).first()
    if token is None:
        token = models.MelhorEnvioToken(id=str(uuid.uuid4()), user_id=user_id)
        db.add(token)
    token.access_token = data["access_token"]
    token.refresh_token = data.get("refresh_token") or token.refresh_token or ""
    token.token_type = data.get("token_type") or "Bearer"
    token.scope = data.get("scope")
    token.expires_at = expires_at
    return token


async def exchange_code(db: Session, *, code: str, user_id: str) -> models.MelhorEnvioToken:
    body = {
        "grant_type": "authorization_code",
        "client_id": settings.melhorenvio_client_id,
        "client_secret": settings.melhorenvio_client_secret,
        "redirect_uri": settings.melhorenvio_redirect_uri,
        "code": code,
    }
    try:
        data = await _request("POST", f"{settings.melhorenvio_base_url}/oauth/token", json_body=body)
    except MelhorEnvioError as exc:
        raise _fail(db, "exchange_token", exc, user_id=user_id)
    token = _store_token(db, user_id, data)
    _log_operation(db, "exchange_token", "success", user_id=user_id, message="Tokens obtidos")
    db.commit()
    db.refresh(token)
    return token


async def refresh_access_token(db: Session, *, user_id: str) -> models.MelhorEnvioToken:
    current = db.query(models.MelhorEnvioToken).filter(models.MelhorEnvioToken.user_id == user_id).first()
    if current is None:
        raise MelhorEnvioError("Token não encontrado", status_code=400)
    body = {
        "grant_type": "refresh_token",
        "client_id": settings.melhorenvio_client_id,
        "client_secret": settings.melhorenvio_client_secret,
        "refresh_token": current.refresh_token,
    }
    try:
        data = await _request("POST", f"{settings.melhorenvio_base_url}/oauth/token", json_body=body)
    except MelhorEnvioError as exc:
        raise _fail(db, "refresh_token", exc, user_id=user_id)
    token = _store_token(db, user_id, data)
    _log_operation(db, "refresh_token", "success", user_id=user_id, message="Token renovado")
    db.commit()
    return token


async def get_valid_token(db: Session, user_id: str | None) -> str:
    """Token fixo da loja tem precedência sobre o OAuth do usuário."""
    if settings.melhorenvio_access_token:
        return settings.melhorenvio_access_token
    if not user_id:
        raise MelhorEnvioError("MelhorEnvio não configurado", status_code=400)

    token = db.query(models.MelhorEnvioToken).filter(models.MelhorEnvioToken.user_id == user_id).first()
    if token is None:
        raise MelhorEnvioError(
            "Token não encontrado. Autorize o aplicativo MelhorEnvio", status_code=400
        )
    if as_utc(token.expires_at) - utc_now() < TOKEN_REFRESH_MARGIN:
        token = await refresh_access_token(db, user_id=user_id)
    return token.access_token


def authorization_status(db: Session, user_id: str) -> dict:
    if settings.melhorenvio_access_token:
        return {"authorized": True, "mode": "fixed_token"}
    token = db.query(models.MelhorEnvioToken).filter(models.MelhorEnvioToken.user_id == user_id).first()
    if token is None:
        return {"authorized": False, "mode": "oauth2"}
    expires_at = as_utc(token.expires_at)
    return {
        "authorized": expires_at > utc_now(),
        "mode": "oauth2",
        "expires_at": expires_at,
        "authorized_since": token.created_at,
    }


# Cotação


def _shipping_products(db: Session, items: list[schemas.ShippingProductIn]) -> list[dict]:
    ids = {item.product_id for item in items}
    products = {
        p.id: p
        for p in db.query(models.Product)
        .filter(models.Product.id.in_(ids), models.Product.is_active.is_(True))
        .all()
    }
    result = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Produto não encontrado: {item.product_id}")
        if not product.has_dimensions:
            raise HTTPException(
                status_code=400,
                detail="Todos os produtos devem ter dimensões (largura, altura, comprimento e peso)",
            )
        result.append(
            {
                "id": product.id,
                "width": product.width_cm,
                "height": product.height_cm,
                "length": product.length_cm,
                "weight": float(product.weight_kg),
                "insurance_value": product.price_cents / 100,
                "quantity": item.quantity,
            }
        )
    return result


def _quote_request(to_zip_code: str, products: list[dict]) -> dict:
    return {
        "from": {"postal_code": digits(settings.store_zip_code)},
        "to": {"postal_code": digits(to_zip_code)},
        "products": products,
        "options": {"receipt": False, "own_hand": False, "collect": False},
    }


def parse_quote(quote: dict) -> dict:
    company = quote.get("company") or {}
    return {
        "service_id": int(quote["id"]),
        "service_name": quote.get("name") or "",
        "company_id": company.get("id"),
        "company_name": company.get("name"),
        "company_picture": company.get("picture"),
        "price_cents": to_cents(quote.get("custom_price") or quote.get("price") or 0),
        "discount_cents": to_cents(quote.get("discount") or 0),
        "delivery_time": int(quote.get("custom_delivery_time") or quote.get("delivery_time") or 0) or None,
        "delivery_range": quote.get("delivery_range"),
        "packages": quote.get("packages"),
    }


async def _fetch_quotes(token: str, body: dict) -> list[dict]:
    data = await _request("POST", f"{api_url()}/me/shipment/calculate", token=token, json_body=body)
    if not isinstance(data, list):
        raise MelhorEnvioError("Resposta inesperada do MelhorEnvio", payload=data)
    # cotações com "error" são transportadoras que não atendem o trecho
    return [parse_quote(quote) for quote in data if not quote.get("error")]


async def calculate_shipping(
    db: Session, *, user: models.User, payload: schemas.ShippingCalculateIn
) -> list[models.ShippingQuote]:
    body = _quote_request(payload.to_zip_code, _shipping_products(db, payload.products))
    try:
        token = await get_valid_token(db, user.id)
        quotes = await _fetch_quotes(token, body)
    except MelhorEnvioError as exc:
        raise _fail(db, "calculate_shipping", exc, user_id=user.id, request=body)

    rows = []
    for quote in quotes:
        row = models.ShippingQuote(
            id=str(uuid.uuid4()),
            user_id=user.id,
            service_id=quote["service_id"],
            service_name=quote["service_name"],
            company_id=quote["company_id"],
            company_name=quote["company_name"],
            company_picture=quote["company_picture"],
            price_cents=quote["price_cents"],
            discount_cents=quote["discount_cents"],
            delivery_time=quote["delivery_time"],
            delivery_range_json=json.dumps(quote["delivery_range"]) if quote["delivery_range"] else None,
            packages_json=json.dumps(quote["packages"]) if quote["packages"] else None,
            from_zip_code=format_zip_code(settings.store_zip_code),
            to_zip_code=format_zip_code(payload.to_zip_code),
        )
        db.add(row)
        rows.append(row)
    _log_operation(
        db,
        "calculate_shipping",
        "success",
        user_id=user.id,
        message=f"{len(rows)} cotações válidas",
        request=body,
    )
    db.commit()
    return rows


async def estimate_shipping(db: Session, *, payload: schemas.ShippingCalculateIn) -> list[dict]:
    if not settings.melhorenvio_access_token:
        raise MelhorEnvioError("Cotação indisponível no momento", status_code=503)
    body = _quote_request(payload.to_zip_code, _shipping_products(db, payload.products))
    quotes = await _fetch_quotes(settings.melhorenvio_access_token, body)
    return [
        {key: quote[key] for key in ("service_id", "service_name", "company_name", "company_picture",
                                     "price_cents", "discount_cents", "delivery_time")}
        for quote in quotes
    ]


# Etiquetas


def _sender() -> dict:
    return {
        "name": settings.store_name,
        "phone": digits(settings.store_phone),
        "email": settings.store_email,
        "document": digits(settings.store_document),
        "address": settings.store_street,
        "number": settings.store_number,
        "district": settings.store_district,
        "city": settings.store_city,
        "state_abbr": settings.store_state,
        "country_id": "BR",
        "postal_code": digits(settings.store_zip_code),
    }


def _recipient(order: models.Order, customer: models.User) -> dict:
    address = json.loads(order.shipping_address_json or "{}")
    return {
        "name": customer.name,
        "phone": digits(customer.phone),
        "email": customer.email,
        "document": digits(customer.cpf),
        "address": address.get("street"),
        "complement": address.get("complement") or "",
        "number": address.get("number"),
        "district": address.get("neighborhood"),
        "city": address.get("city"),
        "state_abbr": address.get("state"),
        "country_id": "BR",
        "postal_code": digits(address.get("zip_code")),
    }


def _volumes(quote: models.ShippingQuote | None, products: list[models.Product]) -> list[dict]:
    if quote is not None and quote.packages_json:
        packages = json.loads(quote.packages_json)
        volumes = []
        for package in packages:
            dimensions = package.get("dimensions") or {}
            volumes.append(
                {
                    "height": dimensions.get("height"),
                    "width": dimensions.get("width"),
                    "length": dimensions.get("length"),
                    "weight": float(package.get("weight") or 0),
                }
            )
        if volumes:
            return volumes
    measured = [p for p in products if p.has_dimensions]
    if not measured:
        raise HTTPException(status_code=400, detail="Produtos sem dimensões para gerar etiqueta")
    return [
        {
            "height": max(p.height_cm for p in measured),
            "width": max(p.width_cm for p in measured),
            "length": max(p.length_cm for p in measured),
            "weight": round(sum(float(p.weight_kg) for p in measured), 3),
        }
    ]


async def create_label(db: Session, *, admin: models.User, payload: schemas.LabelCreateIn) -> models.ShippingLabel:
    order = (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.id == payload.order_id)
        .first()
    )
    if order is None:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    if order.payment_status != models.PaymentStatus.paid.value:
        raise HTTPException(status_code=409, detail="Pedido ainda não foi pago")
    existing = (
        db.query(models.ShippingLabel)
        .filter(
            models.ShippingLabel.order_id == order.id,
            models.ShippingLabel.status != models.ShippingLabelStatus.cancelled.value,
        )
        .first()
    )
    if existing is not None:
        raise HTTPException(status_code=409, detail="Pedido já possui etiqueta")

    quote_id = payload.quote_id or order.shipping_quote_id
    quote = db.query(models.ShippingQuote).filter(models.ShippingQuote.id == quote_id).first() if quote_id else None
    service_id = payload.service_id or (quote.service_id if quote else None)
    if not service_id:
        raise HTTPException(status_code=400, detail="Serviço de entrega não informado")

    customer = db.query(models.User).filter(models.User.id == order.user_id).first()
    product_ids = [item.product_id for item in order.items]
    products = db.query(models.Product).filter(models.Product.id.in_(product_ids)).all()
    weights = {p.id: float(p.weight_kg) if p.weight_kg is not None else 0.0 for p in products}

    body = {
        "service": service_id,
        "from": _sender(),
        "to": _recipient(order, customer),
        "products": [
            {
                "name": item.product_name,
                "quantity": item.quantity,
                "unitary_value": item.unit_price_cents / 100,
                "weight": weights.get(item.product_id, 0.0),
            }
            for item in order.items
        ],
        "volumes": _volumes(quote, products),
        "options": {
            "insurance_value": order.subtotal_cents / 100,
            "receipt": False,
            "own_hand": False,
            "collect": False,
            "reverse": False,
            "non_commercial": True,
            "platform": settings.store_name,
            "tags": [{"tag": order.order_number}],
        },
    }

    try:
        token = await get_valid_token(db, admin.id)
        data = await _request("POST", f"{api_url()}/me/cart", token=token, json_body=body)
    except MelhorEnvioError as exc:
        raise _fail(db, "create_label", exc, user_id=admin.id, order_id=order.id, request=body)

    label = models.ShippingLabel(
        id=str(uuid.uuid4()),
        order_id=order.id,
        user_id=admin.id,
        quote_id=quote.id if quote else None,
        melhorenvio_order_id=str(data["id"]),
        protocol=data.get("protocol"),
        service_id=service_id,
        service_name=quote.service_name if quote else order.shipping_service,
        status=models.ShippingLabelStatus.pending.value,
        payment_status="pending",
        price_cents=to_cents(data.get("price") or 0),
    )
    db.add(label)
    _log_operation(
        db,
        "create_label",
        "success",
        user_id=admin.id,
        order_id=order.id,
        message="Etiqueta adicionada ao carrinho",
        request=body,
        response=data,
    )
    db.commit()
    db.refresh(label)
    return label


def get_labels(db: Session, label_ids: list[str]) -> list[models.ShippingLabel]:
    labels = db.query(models.ShippingLabel).filter(models.ShippingLabel.id.in_(label_ids)).all()
    if len(labels) != len(set(label_ids)):
        raise HTTPException(status_code=404, detail="Etiqueta não encontrada")
    return labels


def list_labels(db: Session, *, order_id: str | None = None, status: str | None = None) -> list[models.ShippingLabel]:
    query = db.query(models.ShippingLabel)
    if order_id:
        query = query.filter(models.ShippingLabel.order_id == order_id)
    if status:
        query = query.filter(models.ShippingLabel.status == status)
    return query.order_by(models.ShippingLabel.created_at.desc()).all()


async def generate_labels(db: Session, *, admin: models.User, label_ids: list[str]) -> list[models.ShippingLabel]:
    labels = get_labels(db, label_ids)
    unpaid = [label.id for label in labels if label.status != models.ShippingLabelStatus.released.value]
    if unpaid:
        raise HTTPException(
            status_code=409,
            detail={"error": "LABEL_NOT_RELEASED", "message": "Etiqueta precisa estar paga", "label_ids": unpaid},
        )
    body = {"orders": [label.melhorenvio_order_id for label in labels]}
    try:
        token = await get_valid_token(db, admin.id)
        data = await _request("POST", f"{api_url()}/me/shipment/generate", token=token, json_body=body)
    except MelhorEnvioError as exc:
        raise _fail(db, "generate_label", exc, user_id=admin.id, request=body)

    now = utc_now()
    for label in labels:
        result = data.get(label.melhorenvio_order_id) if isinstance(data, dict) else None
        if result is None or result.get("status"):
            label.status = models.ShippingLabelStatus.generated.value
            label.generated_at = now
    _log_operation(db, "generate_label", "success", user_id=admin.id, request=body, response=data)
    db.commit()
    return labels


async def print_labels(db: Session, *, admin: models.User, label_ids: list[str]) -> str:
    labels = get_labels(db, label_ids)
    body = {"mode": "public", "orders": [label.melhorenvio_order_id for label in labels]}
    try:
        token = await get_valid_token(db, admin.id)
        data = await _request("POST", f"{api_url()}/me/shipment/print", token=token, json_body=body)
    except MelhorEnvioError as exc:
        raise _fail(db, "print_label", exc, user_id=admin.id, request=body)

    url = data.get("url") if isinstance(data, dict) else None
    if not url:
        raise MelhorEnvioError("MelhorEnvio não retornou a URL da etiqueta", payload=data)
    for label in labels:
        label.label_url = url
    _log_operation(db, "print_label", "success", user_id=admin.id, request=body, response=data)
    db.commit()
    return url


async def cancel_label(
    db: Session, *, admin: models.User, label_id: str, reason: str | None = None
) -> models.ShippingLabel:
    label = get_labels(db, [label_id])[0]
    if label.status in (models.ShippingLabelStatus.posted.value, models.ShippingLabelStatus.delivered.value):
        raise HTTPException(status_code=409, detail="Etiqueta já postada não pode ser cancelada")
    body = {"order": {"id": label.melhorenvio_order_id, "reason": reason or "Cancelado pela loja"}}
    try:
        token = await get_valid_token(db, admin.id)
        data = await _request("POST", f"{api_url()}/me/shipment/cancel", token=token, json_body=body)
    except MelhorEnvioError as exc:
        raise _fail(db, "cancel_label", exc, user_id=admin.id, order_id=label.order_id, request=body)

    label.status = models.ShippingLabelStatus.cancelled.value
    label.cancelled_at = utc_now()
    _log_operation(
        db, "cancel_label", "success", user_id=admin.id, order_id=label.order_id, request=body, response=data
    )
    db.commit()
    db.refresh(label)
    return label


async def track_shipment(db: Session, *, user: models.User, label_id: str) -> dict:
    label = db.query(models.ShippingLabel).filter(models.ShippingLabel.id == label_id).first()
    order = db.query(models.Order).filter(models.Order.id == label.order_id).first() if label else None
    if label is None or order is None or (order.user_id != user.id and not user.is_admin):
        raise HTTPException(status_code=404, detail="Etiqueta não encontrada")

    token = await get_valid_token(db, label.user_id)
    data = await _request("GET", f"{api_url()}/me/orders/{label.melhorenvio_order_id}", token=token)
    tracking = data.get("tracking") if isinstance(data, dict) else None
    if tracking and tracking != label.tracking_code:
        label.tracking_code = tracking
        db.commit()
    return {
        "label_id": label.id,
        "status": data.get("status", label.status) if isinstance(data, dict) else label.status,
        "tracking_code": label.tracking_code,
        "tracking_url": label.tracking_url,
        "posted_at": data.get("posted_at") if isinstance(data, dict) else None,
        "delivered_at": data.get("delivered_at") if isinstance(data, dict) else None,
    }
