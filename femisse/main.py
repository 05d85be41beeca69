import os
import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from femisse.db import settings
from femisse.observability import RequestLoggingMiddleware
from femisse.security_headers import SecurityHeadersMiddleware
from femisse.rate_limit import RateLimitMiddleware, RateLimitRule
from femisse.services.maintenance import run_maintenance_loop
from femisse.routers import (
    auth,
    users,
    addresses,
    cards,
    favorites,
    catalog,
    catalog_admin,
    coupons,
    orders,
    payments,
    payment_webhook,
    shipping,
    shipping_webhook,
    reviews,
    testimonials,
)

app = FastAPI(title="Femisse API")

ALLOWED_ORIGINS = [
    # Dev - Vite
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    # Prod
    "https://www.femisse.com.br",
    "https://femisse.com.br",
]

def _parse_env_list(name: str) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]

cors_origins = _parse_env_list("CORS_ALLOWED_ORIGINS") or ALLOWED_ORIGINS
trusted_hosts = _parse_env_list("TRUSTED_HOSTS")

if trusted_hosts:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-Id", "X-Idempotency-Key"],
    allow_credentials=True,
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

payment_limit = 5 if settings.is_production else 50

app.add_middleware(
    RateLimitMiddleware,
    rules=[
        RateLimitRule(path="/auth/login", max_requests=10, window_seconds=60,
                      message="Muitas tentativas de login. Tente novamente em 1 minuto."),
        RateLimitRule(path="/auth/register", max_requests=5, window_seconds=60),
        RateLimitRule(path="/payments/process", max_requests=payment_limit, window_seconds=900,
                      message="Muitas tentativas de pagamento. Aguarde alguns minutos."),
        RateLimitRule(path="/payments/preference", max_requests=payment_limit, window_seconds=900,
                      message="Muitas tentativas de pagamento. Aguarde alguns minutos."),
        RateLimitRule(path="/shipping/calculate", max_requests=30, window_seconds=60),
        RateLimitRule(path="/shipping/estimate", max_requests=30, window_seconds=60),
    ],
    redis_url=settings.redis_url,
)

@app.on_event("startup")
async def start_background_tasks():
    asyncio.create_task(run_maintenance_loop())

@app.get("/health")
def health(): return {"ok": True}

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(addresses.router)
app.include_router(cards.router)
app.include_router(favorites.router)
app.include_router(catalog.router)
app.include_router(catalog_admin.router)
app.include_router(coupons.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(payment_webhook.router)
app.include_router(shipping.router)
app.include_router(shipping_webhook.router)
app.include_router(reviews.router)
app.include_router(testimonials.router)
