from femisse import models

ADDRESS = {
    "label": "Casa",
    "zip_code": "01310-100",
    "street": "Avenida Paulista",
    "number": "1000",
    "city": "São Paulo",
    "state": "sp",
}

CARD = {
    "holder_name": "Ana Souza",
    "last_four": "4242",
    "brand": "Visa",
    "expiry_month": 8,
    "expiry_year": 2030,
}


class TestAddresses:
    def test_first_address_becomes_default(self, client, make_user, auth_headers):
        headers = auth_headers(make_user())
        response = client.post("/addresses", json=ADDRESS, headers=headers)
        assert response.status_code == 201
        body = response.json()
        assert body["is_default"] is True
        assert body["zip_code"] == "01310100"
        assert body["state"] == "SP"

        second = client.post("/addresses", json=dict(ADDRESS, label="Trabalho"), headers=headers)
        assert second.json()["is_default"] is False

    def test_switch_default(self, client, make_user, auth_headers):
        headers = auth_headers(make_user())
        first = client.post("/addresses", json=ADDRESS, headers=headers).json()
        second = client.post("/addresses", json=ADDRESS, headers=headers).json()

        client.post(f"/addresses/{second['id']}/default", headers=headers)

        listed = client.get("/addresses", headers=headers).json()
        defaults = [address["id"] for address in listed if address["is_default"]]
        assert defaults == [second["id"]]
        assert listed[0]["id"] == second["id"]
        assert first["id"] in {address["id"] for address in listed}

    def test_deleting_default_promotes_another(self, client, make_user, auth_headers):
        headers = auth_headers(make_user())
        first = client.post("/addresses", json=ADDRESS, headers=headers).json()
        second = client.post("/addresses", json=ADDRESS, headers=headers).json()

        assert client.delete(f"/addresses/{first['id']}", headers=headers).status_code == 204

        listed = client.get("/addresses", headers=headers).json()
        assert [address["id"] for address in listed] == [second["id"]]
        assert listed[0]["is_default"] is True

    def test_address_limit(self, client, db, make_user, make_address, auth_headers):
        user = make_user()
        for _ in range(10):
            make_address(user, is_default=False)
        response = client.post("/addresses", json=ADDRESS, headers=auth_headers(user))
        assert response.status_code == 400

    def test_invalid_zip_code(self, client, make_user, auth_headers):
        response = client.post("/addresses", json=dict(ADDRESS, zip_code="123"), headers=auth_headers(make_user()))
        assert response.status_code == 422

    def test_cannot_touch_other_users_address(self, client, make_user, make_address, auth_headers):
        address = make_address(make_user())
        headers = auth_headers(make_user())
        assert client.delete(f"/addresses/{address.id}", headers=headers).status_code == 404
        assert client.put(f"/addresses/{address.id}", json=ADDRESS, headers=headers).status_code == 404


class TestCards:
    """Cartões guardam só os 4 últimos dígitos."""

    def test_create_card_is_masked(self, client, make_user, auth_headers):
        response = client.post("/cards", json=dict(CARD, last_four="**** 4242"), headers=auth_headers(make_user()))
        assert response.status_code == 201
        body = response.json()
        assert body["last_four"] == "4242"
        assert body["masked_number"] == "**** **** **** 4242"
        assert body["expiry"] == "08/30"
        assert body["brand"] == "visa"
        assert body["is_default"] is True

    def test_full_card_number_is_rejected(self, client, make_user, auth_headers):
        response = client.post(
            "/cards", json=dict(CARD, last_four="4242424242424242"), headers=auth_headers(make_user())
        )
        assert response.status_code == 422

    def test_default_card_switch_and_delete(self, client, make_user, auth_headers):
        headers = auth_headers(make_user())
        first = client.post("/cards", json=CARD, headers=headers).json()
        second = client.post("/cards", json=dict(CARD, last_four="1111"), headers=headers).json()
        assert second["is_default"] is False

        client.post(f"/cards/{second['id']}/default", headers=headers)
        listed = client.get("/cards", headers=headers).json()
        assert listed[0]["id"] == second["id"]
        assert [card["is_default"] for card in listed] == [True, False]

        assert client.delete(f"/cards/{first['id']}", headers=headers).status_code == 204
        assert len(client.get("/cards", headers=headers).json()) == 1


class TestFavorites:
    def test_add_list_remove(self, client, make_user, make_product, auth_headers):
        headers = auth_headers(make_user())
        product = make_product()

        created = client.post("/favorites", json={"product_id": product.id}, headers=headers)
        assert created.status_code == 201
        assert created.json()["product"]["id"] == product.id

        duplicate = client.post("/favorites", json={"product_id": product.id}, headers=headers)
        assert duplicate.status_code == 409

        assert len(client.get("/favorites", headers=headers).json()) == 1
        assert client.delete(f"/favorites/{product.id}", headers=headers).status_code == 204
        assert client.delete(f"/favorites/{product.id}", headers=headers).status_code == 404

    def test_inactive_products_are_hidden(self, client, db, make_user, make_product, auth_headers):
        headers = auth_headers(make_user())
        product = make_product()
        client.post("/favorites", json={"product_id": product.id}, headers=headers)

        product.is_active = False
        db.commit()

        assert client.get("/favorites", headers=headers).json() == []
        assert db.query(models.Favorite).count() == 1

    def test_unknown_product(self, client, make_user, auth_headers):
        response = client.post("/favorites", json={"product_id": "nao-existe"}, headers=auth_headers(make_user()))
        assert response.status_code == 404
