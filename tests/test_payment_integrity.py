import pytest
from fastapi import HTTPException

from femisse import models
from femisse.services.payment_integrity import (
    adjusted_items,
    ensure_order_payable,
    recompute_order_totals,
    to_cents,
    verify_payment_amount,
)


def _item(product_id, quantity, unit_price_cents):
    return models.OrderItem(
        id=product_id,
        order_id="o1",
        product_id=product_id,
        product_name=f"Produto {product_id}",
        quantity=quantity,
        unit_price_cents=unit_price_cents,
    )


class TestToCents:
    def test_rounds_half_up(self):
        assert to_cents(159.9) == 15990
        assert to_cents("10.005") == 1001
        assert to_cents(0.1 + 0.2) == 30


class TestAdjustedItems:
    """Desconto distribuído nos preços unitários do Checkout Pro."""

    def test_without_discount_prices_are_unchanged(self):
        items = [_item("a", 2, 1000), _item("b", 1, 500)]
        adjusted = adjusted_items(items, 0)
        assert [i.unit_price_cents for i in adjusted] == [1000, 500]

    def test_sum_matches_discounted_subtotal(self):
        items = [_item("a", 1, 3333), _item("b", 1, 3333), _item("c", 1, 3334)]
        adjusted = adjusted_items(items, 1000)
        assert sum(i.unit_price_cents * i.quantity for i in adjusted) == 9000

    def test_remainder_not_divisible_by_quantity_splits_last_line(self):
        adjusted = adjusted_items([_item("a", 3, 1000)], 100)
        assert sum(i.unit_price_cents * i.quantity for i in adjusted) == 2900
        assert [(i.quantity, i.unit_price_cents) for i in adjusted] == [(2, 966), (1, 968)]

    def test_large_quantity_keeps_exact_total(self):
        adjusted = adjusted_items([_item("a", 100, 999)], 9990)
        assert sum(i.unit_price_cents * i.quantity for i in adjusted) == 89910
        assert sum(i.quantity for i in adjusted) == 100

    def test_mixed_lines_sum_exactly(self):
        items = [_item("a", 2, 1999), _item("b", 7, 1333)]
        adjusted = adjusted_items(items, 1234)
        assert sum(i.unit_price_cents * i.quantity for i in adjusted) == 2 * 1999 + 7 * 1333 - 1234
        assert sum(i.quantity for i in adjusted if i.product_id == "b") == 7

    def test_discount_larger_than_subtotal_never_goes_negative(self):
        adjusted = adjusted_items([_item("a", 1, 500)], 900)
        assert adjusted[0].unit_price_cents == 0


class TestOrderIntegrity:
    def test_recomputes_totals_from_items(self, db, make_user, make_order, make_product):
        user = make_user()
        order = make_order(user, products=[make_product(price_cents=10000)], quantity=2)
        totals = recompute_order_totals(db, order)
        assert totals.subtotal_cents == 20000
        assert totals.shipping_cents == 2000
        assert totals.total_cents == 22000

    def test_amount_within_tolerance_is_accepted(self, db, make_user, make_order, make_product):
        user = make_user()
        order = make_order(user, products=[make_product(price_cents=10000)])
        totals = verify_payment_amount(db, order, 120.01)
        assert totals.total_cents == 12000

    def test_amount_mismatch(self, db, make_user, make_order, make_product):
        user = make_user()
        order = make_order(user, products=[make_product(price_cents=10000)])
        with pytest.raises(HTTPException) as exc:
            verify_payment_amount(db, order, 100.00)
        assert exc.value.status_code == 400
        assert exc.value.detail["error"] == "AMOUNT_MISMATCH"

    def test_tampered_stored_total(self, db, make_user, make_order, make_product):
        user = make_user()
        order = make_order(user, products=[make_product(price_cents=10000)])
        order.total_cents = 100
        db.commit()
        with pytest.raises(HTTPException) as exc:
            verify_payment_amount(db, order, 1.00)
        assert exc.value.status_code == 409
        assert exc.value.detail["error"] == "ORDER_TAMPERED"

    def test_other_users_order_is_not_payable(self, db, make_user, make_order):
        owner = make_user()
        order = make_order(owner)
        with pytest.raises(HTTPException) as exc:
            ensure_order_payable(db, order, make_user())
        assert exc.value.status_code == 404

    def test_paid_order_is_not_payable(self, db, make_user, make_order):
        user = make_user()
        order = make_order(user)
        order.payment_status = models.PaymentStatus.paid.value
        db.commit()
        with pytest.raises(HTTPException) as exc:
            ensure_order_payable(db, order, user)
        assert exc.value.detail["error"] == "ORDER_NOT_PENDING"
