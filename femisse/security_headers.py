from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

DEFAULT_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=(self)",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
}

NO_STORE_PREFIXES = ("/auth", "/payments", "/cards", "/addresses", "/users")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, hsts_max_age: int = 31536000):
        super().__init__(app)
        self.hsts_max_age = hsts_max_age

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        forwarded_proto = request.headers.get("x-forwarded-proto", "")
        scheme = forwarded_proto.split(",")[0].strip() if forwarded_proto else request.url.scheme
        if scheme == "https":
            response.headers.setdefault(
                "Strict-Transport-Security", f"max-age={self.hsts_max_age}; includeSubDomains"
            )
        for name, value in DEFAULT_HEADERS.items():
            response.headers.setdefault(name, value)

        # respostas com dados pessoais ou de pagamento não vão para cache
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        return response
