import itertools
import os
import tempfile
import uuid

_TMP_DIR = tempfile.mkdtemp(prefix="femisse-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP_DIR, "femisse.db")
os.environ["APP_ENV"] = "test"
os.environ["AUTH_SECRET"] = "test-auth-secret-with-more-than-32-chars"
os.environ["MERCADO_PAGO_WEBHOOK_SECRET"] = "mp-webhook-secret-for-tests"
os.environ["MELHORENVIO_WEBHOOK_SECRET"] = "me-webhook-secret-for-tests"
os.environ["MERCADO_PAGO_ACCESS_TOKEN"] = "TEST-access-token"
os.environ["MERCADO_PAGO_PUBLIC_KEY"] = "TEST-public-key"
os.environ["MAINTENANCE_ENABLED"] = "false"
for _name in ("REDIS_URL", "MELHORENVIO_ACCESS_TOKEN", "AUTH_SECRET_PREVIOUS"):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from femisse import models, schemas  # noqa: E402
from femisse.cache import cache  # noqa: E402
from femisse.db import Base, SessionLocal, engine  # noqa: E402
from femisse.main import app  # noqa: E402
from femisse.security import create_access_token, hash_password  # noqa: E402
from femisse.services import orders as order_service  # noqa: E402
from femisse.services.user_sessions import create_user_session  # noqa: E402

DEFAULT_PASSWORD = "senha-forte-123"
PASSWORD_HASH = hash_password(DEFAULT_PASSWORD)
STORE_ZIP = "14870390"
CUSTOMER_ZIP = "01310100"

_client_ips = itertools.count(1)


def _uid() -> str:
    return str(uuid.uuid4())


@pytest.fixture(autouse=True)
def _database():
    Base.metadata.create_all(bind=engine)
    cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    # cada teste usa um IP próprio para não dividir a janela do rate limit
    n = next(_client_ips)
    headers = {"x-forwarded-for": f"10.{(n >> 16) & 255}.{(n >> 8) & 255}.{n & 255}"}
    with TestClient(app, headers=headers) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    def _make(email=None, *, role=models.UserRole.customer, name="Ana Souza", is_active=True):
        user = models.User(
            id=_uid(),
            name=name,
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            password_hash=PASSWORD_HASH,
            role=role.value,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers(db):
    def _headers(user):
        session_id, _ = create_user_session(db, user=user, ttl_minutes=60)
        db.commit()
        token = create_access_token({"sub": user.id, "role": user.role, "sid": session_id})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_category(db):
    def _make(name="Vestidos"):
        category = models.Category(id=_uid(), name=name, slug=name.lower(), display_order=0)
        db.add(category)
        db.commit()
        db.refresh(category)
        return category

    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Vestido Midi", *, price_cents=15990, stock=5, category=None, is_active=True):
        variants = None
        if stock is not None:
            variants = f'[{{"color": "Preto", "sizes": [{{"size": "M", "stock": {stock}}}]}}]'
        product = models.Product(
            id=_uid(),
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
            price_cents=price_cents,
            variants_json=variants,
            category_id=category.id if category else None,
            weight_kg=0.4,
            height_cm=5,
            width_cm=20,
            length_cm=30,
            is_active=is_active,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def make_address(db):
    def _make(user, *, zip_code=CUSTOMER_ZIP, is_default=True):
        address = models.Address(
            id=_uid(),
            user_id=user.id,
            zip_code=zip_code,
            street="Avenida Paulista",
            number="1000",
            city="São Paulo",
            state="SP",
            is_default=is_default,
        )
        db.add(address)
        db.commit()
        db.refresh(address)
        return address

    return _make


@pytest.fixture
def make_quote(db):
    def _make(user, *, to_zip_code=CUSTOMER_ZIP, price_cents=2000, discount_cents=0):
        quote = models.ShippingQuote(
            id=_uid(),
            user_id=user.id,
            service_id=1,
            service_name="PAC",
            company_name="Correios",
            price_cents=price_cents,
            discount_cents=discount_cents,
            delivery_time=5,
            from_zip_code=STORE_ZIP,
            to_zip_code=to_zip_code,
        )
        db.add(quote)
        db.commit()
        db.refresh(quote)
        return quote

    return _make


@pytest.fixture
def make_order(db, make_address, make_quote, make_product):
    def _make(user, *, products=None, quantity=1, coupon_code=None, payment_method=models.PaymentMethod.pix):
        products = products or [make_product()]
        address = make_address(user)
        quote = make_quote(user)
        payload = schemas.OrderCreate(
            items=[
                schemas.OrderItemIn(product_id=p.id, quantity=quantity, variant_color="Preto", variant_size="M")
                for p in products
            ],
            address_id=address.id,
            shipping_quote_id=quote.id,
            coupon_code=coupon_code,
            payment_method=payment_method,
        )
        return order_service.create_order(db, user=user, payload=payload)

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="BEMVINDA10", *, discount_type="percentage", discount_value=10, scope="storewide", **extra):
        coupon = models.Coupon(
            id=_uid(),
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            scope=scope,
            max_uses_per_user=extra.pop("max_uses_per_user", 1),
            min_purchase_cents=extra.pop("min_purchase_cents", 0),
            is_active=extra.pop("is_active", True),
            **extra,
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    return _make
