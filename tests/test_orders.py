import json
from datetime import timedelta

from femisse import models
from femisse.services.maintenance import run_maintenance_once
from femisse.services.orders import expire_pending_orders
from femisse.services.payments import apply_provider_status
from femisse.services.user_sessions import utc_now


def _stock(db, product):
    db.expire_all()
    fresh = db.query(models.Product).filter(models.Product.id == product.id).one()
    return json.loads(fresh.variants_json)[0]["sizes"][0]["stock"]


def _order_payload(product, address, quote, **extra):
    payload = {
        "items": [{"product_id": product.id, "quantity": 2, "variant_color": "Preto", "variant_size": "M"}],
        "address_id": address.id,
        "shipping_quote_id": quote.id,
        "payment_method": "pix",
    }
    payload.update(extra)
    return payload


class TestCreateOrder:
    """Criação de pedido com preços do catálogo e reserva de estoque."""

    def test_totals_come_from_catalog_and_quote(
        self, client, db, make_user, auth_headers, make_product, make_address, make_quote
    ):
        user = make_user()
        product = make_product(price_cents=15990, stock=5)
        address = make_address(user)
        quote = make_quote(user, price_cents=2500, discount_cents=500)

        response = client.post("/orders", json=_order_payload(product, address, quote), headers=auth_headers(user))

        assert response.status_code == 201
        body = response.json()
        assert body["subtotal_cents"] == 31980
        assert body["shipping_cents"] == 2000
        assert body["total_cents"] == 33980
        assert body["status"] == "pending"
        assert body["payment_status"] == "pending"
        assert body["order_number"].startswith("FEM-")
        assert _stock(db, product) == 3

    def test_coupon_discount_is_applied(
        self, client, make_user, auth_headers, make_product, make_address, make_quote, make_coupon
    ):
        user = make_user()
        product = make_product(price_cents=10000)
        make_coupon("DEZ")
        response = client.post(
            "/orders",
            json=_order_payload(product, make_address(user), make_quote(user), coupon_code="dez"),
            headers=auth_headers(user),
        )
        body = response.json()
        assert body["discount_cents"] == 2000
        assert body["total_cents"] == 20000 - 2000 + 2000
        assert body["coupon_code"] == "DEZ"

    def test_insufficient_stock(self, client, db, make_user, auth_headers, make_product, make_address, make_quote):
        user = make_user()
        product = make_product(stock=1)
        response = client.post(
            "/orders",
            json=_order_payload(product, make_address(user), make_quote(user)),
            headers=auth_headers(user),
        )
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "INSUFFICIENT_STOCK"
        assert _stock(db, product) == 1

    def test_quote_for_other_zip_code_is_rejected(
        self, client, make_user, auth_headers, make_product, make_address, make_quote
    ):
        user = make_user()
        response = client.post(
            "/orders",
            json=_order_payload(make_product(), make_address(user), make_quote(user, to_zip_code="20040020")),
            headers=auth_headers(user),
        )
        assert response.status_code == 400

    def test_other_users_address_is_rejected(
        self, client, make_user, auth_headers, make_product, make_address, make_quote
    ):
        user = make_user()
        response = client.post(
            "/orders",
            json=_order_payload(make_product(), make_address(make_user()), make_quote(user)),
            headers=auth_headers(user),
        )
        assert response.status_code == 400

    def test_requires_authentication(self, client):
        assert client.post("/orders", json={}).status_code in (401, 422)
        assert client.get("/orders/me").status_code == 401


class TestOrderAccess:
    def test_customer_sees_only_own_orders(self, client, make_user, auth_headers, make_order):
        owner, stranger = make_user(), make_user()
        order = make_order(owner)

        assert client.get(f"/orders/{order.id}", headers=auth_headers(owner)).status_code == 200
        assert client.get(f"/orders/{order.id}", headers=auth_headers(stranger)).status_code == 404
        mine = client.get("/orders/me", headers=auth_headers(owner)).json()
        assert [o["id"] for o in mine] == [order.id]

    def test_admin_lists_every_order(self, client, make_user, auth_headers, make_order):
        make_order(make_user())
        make_order(make_user())
        admin = make_user(role=models.UserRole.admin)
        assert len(client.get("/orders", headers=auth_headers(admin)).json()) == 2
        assert client.get("/orders", headers=auth_headers(make_user())).status_code == 403

    def test_list_cache_is_invalidated_after_update(self, client, make_user, auth_headers, make_order):
        user = make_user()
        admin_headers = auth_headers(make_user(role=models.UserRole.admin))
        order = make_order(user)
        headers = auth_headers(user)
        assert client.get("/orders/me", headers=headers).json()[0]["status"] == "pending"

        client.patch(f"/orders/{order.id}", json={"status": "processing"}, headers=admin_headers)

        assert client.get("/orders/me", headers=headers).json()[0]["status"] == "processing"


class TestOrderCancellation:
    def test_admin_cancel_releases_stock_once(self, client, db, make_user, auth_headers, make_order, make_product):
        product = make_product(stock=5)
        order = make_order(make_user(), products=[product], quantity=2)
        admin_headers = auth_headers(make_user(role=models.UserRole.admin))
        assert _stock(db, product) == 3

        client.patch(f"/orders/{order.id}", json={"status": "cancelled"}, headers=admin_headers)
        client.patch(f"/orders/{order.id}", json={"payment_status": "cancelled"}, headers=admin_headers)

        assert _stock(db, product) == 5

    def test_expire_pending_pix_orders(self, db, make_user, make_order, make_product):
        product = make_product(stock=5)
        stale = make_order(make_user(), products=[product])
        card = make_order(make_user(), products=[product], payment_method=models.PaymentMethod.credit_card)
        fresh = make_order(make_user(), products=[product])
        for order in (stale, card):
            order.created_at = utc_now() - timedelta(minutes=45)
        db.commit()

        assert expire_pending_orders(db, older_than_minutes=30) == 1

        db.expire_all()
        stale = db.get(models.Order, stale.id)
        assert stale.status == "cancelled"
        assert stale.payment_status == "expired"
        assert db.get(models.Order, card.id).status == "pending"
        assert db.get(models.Order, fresh.id).status == "pending"
        assert _stock(db, product) == 3

    def test_maintenance_run_expires_and_purges(self, db, make_user, make_order):
        order = make_order(make_user())
        order.created_at = utc_now() - timedelta(days=1)
        db.add(
            models.ProcessedWebhook(
                id="old-record",
                webhook_hash="0" * 64,
                provider="mercadopago",
                webhook_type="payment",
                created_at=utc_now() - timedelta(days=3),
            )
        )
        db.commit()

        assert run_maintenance_once() == {"expired_orders": 1, "purged_webhooks": 1}
        assert run_maintenance_once() == {"expired_orders": 0, "purged_webhooks": 0}


def _set_stock(db, product, stock):
    fresh = db.query(models.Product).filter(models.Product.id == product.id).one()
    variants = json.loads(fresh.variants_json)
    variants[0]["sizes"][0]["stock"] = stock
    fresh.variants_json = json.dumps(variants)
    db.commit()


class TestLatePixApproval:
    """PIX aprovado depois que o pedido já expirou."""

    def _expired_order(self, db, make_user, make_order, product):
        order = make_order(make_user(), products=[product], quantity=2)
        order.created_at = utc_now() - timedelta(minutes=60)
        db.commit()
        assert expire_pending_orders(db, older_than_minutes=30) == 1
        db.expire_all()
        return db.get(models.Order, order.id)

    def test_approval_reserves_stock_again(self, db, make_user, make_order, make_product):
        product = make_product(stock=5)
        order = self._expired_order(db, make_user, make_order, product)
        assert _stock(db, product) == 5

        apply_provider_status(db, order, "approved")
        db.commit()

        db.expire_all()
        order = db.get(models.Order, order.id)
        assert order.status == "processing"
        assert order.payment_status == "paid"
        assert order.stock_released is False
        assert order.cancelled_at is None
        assert _stock(db, product) == 3

    def test_approval_without_stock_keeps_order_cancelled(self, db, make_user, make_order, make_product):
        product = make_product(stock=5)
        order = self._expired_order(db, make_user, make_order, product)
        _set_stock(db, product, 1)
        order = db.get(models.Order, order.id)

        apply_provider_status(db, order, "approved")
        db.commit()

        db.expire_all()
        order = db.get(models.Order, order.id)
        assert order.status == "cancelled"
        assert order.payment_status == "paid"
        assert order.stock_released is True
        assert _stock(db, product) == 1
