import json
from datetime import timedelta

import pytest
from fastapi import HTTPException

from femisse import models
from femisse.services.coupons import CartLine, calculate_discount, register_coupon_usage, validate_coupon
from femisse.services.user_sessions import utc_now


def _coupon(**kwargs):
    data = {
        "id": "c1",
        "code": "TESTE",
        "discount_type": "percentage",
        "discount_value": 10,
        "scope": "storewide",
    }
    data.update(kwargs)
    return models.Coupon(**data)


LINES = [
    CartLine(product_id="p1", quantity=2, unit_price_cents=5000, category="Vestidos"),
    CartLine(product_id="p2", quantity=1, unit_price_cents=3000, category="Blusas"),
]


class TestCalculateDiscount:
    def test_percentage_storewide(self):
        assert calculate_discount(_coupon(), LINES) == (13000, 1300)

    def test_fixed_is_capped_at_applicable_subtotal(self):
        coupon = _coupon(discount_type="fixed", discount_value=5000, scope="product",
                         applicable_products_json=json.dumps(["p2"]))
        assert calculate_discount(coupon, LINES) == (3000, 3000)

    def test_category_scope_is_case_insensitive(self):
        coupon = _coupon(scope="category", applicable_categories_json=json.dumps(["vestidos"]))
        assert calculate_discount(coupon, LINES) == (10000, 1000)

    def test_category_scope_without_categories_is_invalid(self):
        with pytest.raises(HTTPException):
            calculate_discount(_coupon(scope="category"), LINES)


class TestValidateCoupon:
    """Ordem das validações de cupom."""

    def test_unknown_code(self, db, make_user):
        with pytest.raises(HTTPException) as exc:
            validate_coupon(db, code="NAOEXISTE", user_id=make_user().id, lines=LINES)
        assert exc.value.status_code == 404

    def test_code_is_normalized(self, db, make_user, make_coupon):
        make_coupon("BEMVINDA10")
        quote = validate_coupon(db, code="  bemvinda10 ", user_id=make_user().id, lines=LINES)
        assert quote.discount_cents == 1300
        assert quote.applicable_product_ids == ["p1", "p2"]

    def test_expired(self, db, make_user, make_coupon):
        make_coupon("VELHO", valid_to=utc_now() - timedelta(days=1))
        with pytest.raises(HTTPException) as exc:
            validate_coupon(db, code="VELHO", user_id=make_user().id, lines=LINES)
        assert exc.value.detail["error"] == "Cupom expirado"

    def test_inactive(self, db, make_user, make_coupon):
        make_coupon("PAUSADO", is_active=False)
        with pytest.raises(HTTPException) as exc:
            validate_coupon(db, code="PAUSADO", user_id=make_user().id, lines=LINES)
        assert exc.value.detail["error"] == "Cupom inativo"

    def test_minimum_purchase(self, db, make_user, make_coupon):
        make_coupon("MINIMO", min_purchase_cents=20000)
        with pytest.raises(HTTPException) as exc:
            validate_coupon(db, code="MINIMO", user_id=make_user().id, lines=LINES)
        assert exc.value.detail["error"] == "Valor mínimo não atingido"

    def test_minimum_purchase_counts_the_whole_cart(self, db, make_user, make_coupon):
        make_coupon(
            "VESTIDOS10",
            scope="category",
            applicable_categories_json=json.dumps(["Vestidos"]),
            min_purchase_cents=10000,
        )
        lines = [
            CartLine(product_id="p1", quantity=1, unit_price_cents=5000, category="Vestidos"),
            CartLine(product_id="p2", quantity=1, unit_price_cents=20000, category="Blusas"),
        ]
        quote = validate_coupon(db, code="VESTIDOS10", user_id=make_user().id, lines=lines)
        assert quote.discount_cents == 500

    def test_per_user_limit(self, db, make_user, make_coupon):
        user = make_user()
        coupon = make_coupon("UMAVEZ")
        register_coupon_usage(db, coupon=coupon, user_id=user.id, order_id=None, discount_cents=100)
        db.commit()
        with pytest.raises(HTTPException) as exc:
            validate_coupon(db, code="UMAVEZ", user_id=user.id, lines=LINES)
        assert exc.value.detail["error"] == "Limite de uso atingido"
        assert validate_coupon(db, code="UMAVEZ", user_id=make_user().id, lines=LINES).discount_cents == 1300

    def test_global_limit(self, db, make_user, make_coupon):
        make_coupon("ESGOTADO", max_uses=1, used_count=1)
        with pytest.raises(HTTPException) as exc:
            validate_coupon(db, code="ESGOTADO", user_id=make_user().id, lines=LINES)
        assert exc.value.detail["error"] == "Cupom esgotado"

    def test_no_eligible_items(self, db, make_user, make_coupon):
        make_coupon("SAIAS", scope="category", applicable_categories_json=json.dumps(["Saias"]))
        with pytest.raises(HTTPException) as exc:
            validate_coupon(db, code="SAIAS", user_id=make_user().id, lines=LINES)
        assert exc.value.detail["error"] == "Cupom não aplicável"


class TestCouponsApi:
    def test_validate_endpoint_uses_catalog_prices(self, client, make_user, auth_headers, make_product, make_coupon):
        user = make_user()
        product = make_product(price_cents=20000)
        make_coupon("DEZ")
        response = client.post(
            "/coupons/validate",
            json={"code": "dez", "items": [{"product_id": product.id, "quantity": 1}]},
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["subtotal_cents"] == 20000
        assert body["discount_cents"] == 2000

    def test_admin_creates_coupon_and_rejects_duplicate(self, client, make_user, auth_headers):
        headers = auth_headers(make_user(role=models.UserRole.admin))
        payload = {"code": "natal25", "discount_type": "percentage", "discount_value": 25}
        first = client.post("/coupons", json=payload, headers=headers)
        assert first.status_code == 201
        assert first.json()["code"] == "NATAL25"
        assert client.post("/coupons", json=payload, headers=headers).status_code == 409

    def test_customer_cannot_manage_coupons(self, client, make_user, auth_headers):
        response = client.get("/coupons", headers=auth_headers(make_user()))
        assert response.status_code == 403

    def test_active_list_hides_expired(self, client, make_coupon):
        make_coupon("ATIVO")
        make_coupon("VENCIDO", valid_to=utc_now() - timedelta(days=1))
        codes = [c["code"] for c in client.get("/coupons/active").json()]
        assert codes == ["ATIVO"]
