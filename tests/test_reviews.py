import pytest

from femisse import models
from femisse.services.user_sessions import utc_now


@pytest.fixture
def delivered_order(db, make_order):
    def _make(user, **kwargs):
        order = make_order(user, **kwargs)
        order.status = models.OrderStatus.delivered.value
        order.completed_at = utc_now()
        db.commit()
        return order

    return _make


def review_payload(order, rating=5, comment="Amei o caimento"):
    return {"product_id": order.items[0].product_id, "order_id": order.id, "rating": rating, "comment": comment}


class TestReviewable:
    def test_lists_delivered_items_without_review(self, client, make_user, make_order, delivered_order, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        order = delivered_order(user)
        make_order(user)

        items = client.get("/reviews/reviewable", headers=headers).json()
        assert [(item["order_id"], item["product_id"]) for item in items] == [
            (order.id, order.items[0].product_id)
        ]
        assert items[0]["delivered_at"] is not None

        client.post("/reviews", json=review_payload(order), headers=headers)
        assert client.get("/reviews/reviewable", headers=headers).json() == []


class TestCreateReview:
    """Só quem comprou avalia, uma vez por pedido."""

    def test_create_and_duplicate(self, client, make_user, delivered_order, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        order = delivered_order(user)

        created = client.post("/reviews", json=review_payload(order, comment="  Linda peça "), headers=headers)
        assert created.status_code == 201
        assert created.json()["comment"] == "Linda peça"

        duplicate = client.post("/reviews", json=review_payload(order, rating=3), headers=headers)
        assert duplicate.status_code == 409

    def test_requires_purchase(self, client, make_user, delivered_order, auth_headers):
        order = delivered_order(make_user())
        response = client.post("/reviews", json=review_payload(order), headers=auth_headers(make_user()))
        assert response.status_code == 403

    def test_rating_range(self, client, make_user, delivered_order, auth_headers):
        user = make_user()
        order = delivered_order(user)
        response = client.post("/reviews", json=review_payload(order, rating=6), headers=auth_headers(user))
        assert response.status_code == 422

    def test_update_and_delete_are_owner_only(self, client, make_user, delivered_order, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        review = client.post("/reviews", json=review_payload(delivered_order(user)), headers=headers).json()
        stranger = auth_headers(make_user())

        assert client.patch(f"/reviews/{review['id']}", json={"rating": 1}, headers=stranger).status_code == 404
        updated = client.patch(f"/reviews/{review['id']}", json={"rating": 4}, headers=headers)
        assert updated.json()["rating"] == 4

        assert client.delete(f"/reviews/{review['id']}", headers=stranger).status_code == 404
        assert client.delete(f"/reviews/{review['id']}", headers=headers).status_code == 204
        assert client.get("/reviews/me", headers=headers).json() == []


class TestPublicReviews:
    def test_reviews_show_first_name_only(self, client, make_user, delivered_order, auth_headers):
        user = make_user(name="Beatriz Oliveira Santos")
        order = delivered_order(user)
        client.post("/reviews", json=review_payload(order), headers=auth_headers(user))

        reviews = client.get(f"/products/{order.items[0].product_id}/reviews").json()
        assert reviews[0]["author"] == "Beatriz"
        assert "user_id" not in reviews[0]

    def test_rating_stats_are_refreshed_after_changes(
        self, client, make_user, make_product, delivered_order, auth_headers
    ):
        product = make_product()
        first, second = make_user(), make_user()
        first_headers = auth_headers(first)
        client.post(
            "/reviews", json=review_payload(delivered_order(first, products=[product]), rating=5), headers=first_headers
        )

        stats = client.get(f"/products/{product.id}/rating-stats").json()
        assert stats == {
            "product_id": product.id,
            "average": 5.0,
            "total": 1,
            "distribution": {"1": 0, "2": 0, "3": 0, "4": 0, "5": 1},
        }

        client.post(
            "/reviews",
            json=review_payload(delivered_order(second, products=[product]), rating=2),
            headers=auth_headers(second),
        )
        stats = client.get(f"/products/{product.id}/rating-stats").json()
        assert stats["total"] == 2
        assert stats["average"] == 3.5
        assert stats["distribution"]["2"] == 1

    def test_stats_without_reviews(self, client, make_product):
        product = make_product()
        stats = client.get(f"/products/{product.id}/rating-stats").json()
        assert stats["total"] == 0
        assert stats["average"] == 0.0
