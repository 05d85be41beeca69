from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from femisse.db import settings

logger = logging.getLogger(__name__)

BASE_URL = "https://api.mercadopago.com"
TIMEOUTS = [15, 15, 15]
BACKOFFS = [0.5, 1.0]


class MercadoPagoError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


def _headers(idempotency_key: str | None = None) -> dict[str, str]:
    token = settings.mercado_pago_access_token
    if not token:
        raise MercadoPagoError("MERCADO_PAGO_ACCESS_TOKEN not configured")
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }
    if idempotency_key:
        headers["X-Idempotency-Key"] = idempotency_key
    return headers


async def _request(
    method: str,
    path: str,
    *,
    json: dict | None = None,
    idempotency_key: str | None = None,
) -> dict:
    url = f"{BASE_URL}{path}"
    headers = _headers(idempotency_key)
    for attempt in range(len(TIMEOUTS)):
        try:
            async with httpx.AsyncClient(timeout=TIMEOUTS[attempt]) as client:
                response = await client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Mercado Pago request failed path=%s attempt=%s error=%s", path, attempt + 1, exc)
            if attempt < len(BACKOFFS):
                await asyncio.sleep(BACKOFFS[attempt])
                continue
            raise MercadoPagoError("Mercado Pago indisponível") from exc

        if response.status_code >= 500 and attempt < len(BACKOFFS):
            logger.warning(
                "Mercado Pago 5xx path=%s attempt=%s status=%s", path, attempt + 1, response.status_code
            )
            await asyncio.sleep(BACKOFFS[attempt])
            continue

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"raw": response.text[:500]}
        if response.status_code >= 400:
            logger.error("Mercado Pago error path=%s status=%s body=%s", path, response.status_code, data)
            message = data.get("message") if isinstance(data, dict) else None
            raise MercadoPagoError(
                message or "Erro ao comunicar com o Mercado Pago",
                status_code=response.status_code,
                payload=data,
            )
        return data
    raise MercadoPagoError("Mercado Pago indisponível")


async def create_preference(payload: dict) -> dict:
    return await _request("POST", "/checkout/preferences", json=payload)


async def create_payment(payload: dict, *, idempotency_key: str) -> dict:
    return await _request("POST", "/v1/payments", json=payload, idempotency_key=idempotency_key)


async def get_payment(payment_id: str) -> dict:
    return await _request("GET", f"/v1/payments/{payment_id}")
