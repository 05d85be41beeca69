from __future__ import annotations

import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("femisse.request")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
logger.setLevel(logging.INFO)
logger.propagate = False

# rotas cujo corpo nunca é logado nem ecoado
SENSITIVE_PATH_PREFIXES = ("/auth/", "/payments/", "/cards")


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = int((time.perf_counter() - start) * 1000)
            payload = self._build_payload(request, request_id, duration_ms, status=500)
            logger.exception(json.dumps(payload, ensure_ascii=True))
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        payload = self._build_payload(request, request_id, duration_ms, status=response.status_code)
        if response.status_code >= 500:
            logger.error(json.dumps(payload, ensure_ascii=True))
        elif response.status_code >= 400:
            logger.warning(json.dumps(payload, ensure_ascii=True))
        else:
            logger.info(json.dumps(payload, ensure_ascii=True))

        response.headers["X-Request-Id"] = request_id
        return response

    @staticmethod
    def _build_payload(request: Request, request_id: str, duration_ms: int, status: int) -> dict:
        path = request.url.path
        return {
            "event": "http_request",
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "query": None if path.startswith(SENSITIVE_PATH_PREFIXES) else (request.url.query or None),
            "status": status,
            "duration_ms": duration_ms,
            "client_ip": client_ip(request),
        }
