import uuid

from femisse import models


class TestCatalog:
    def test_list_filters_by_category_and_search(self, client, make_category, make_product):
        vestidos = make_category("Vestidos")
        blusas = make_category("Blusas")
        make_product("Vestido Midi Floral", category=vestidos)
        make_product("Blusa de Linho", category=blusas)
        make_product("Vestido Antigo", category=vestidos, is_active=False)

        by_slug = client.get("/products", params={"category": "vestidos"}).json()
        assert [product["name"] for product in by_slug] == ["Vestido Midi Floral"]

        by_name = client.get("/products", params={"category": "Blusas"}).json()
        assert [product["name"] for product in by_name] == ["Blusa de Linho"]

        searched = client.get("/products", params={"search": "linho"}).json()
        assert [product["name"] for product in searched] == ["Blusa de Linho"]

    def test_product_detail_by_id_or_slug(self, client, make_product):
        product = make_product()
        by_id = client.get(f"/products/{product.id}")
        by_slug = client.get(f"/products/{product.slug}")
        assert by_id.json()["id"] == by_slug.json()["id"] == product.id
        assert by_id.json()["variants"][0]["color"] == "Preto"
        assert client.get("/products/nao-existe").status_code == 404

    def test_categories_are_ordered(self, client, db, make_category):
        make_category("Saias")
        first = make_category("Acessórios")
        first.display_order = -1
        db.commit()
        names = [category["name"] for category in client.get("/categories").json()]
        assert names == ["Acessórios", "Saias"]

    def test_ids_filter(self, client, make_product):
        wanted = make_product("Saia Plissada")
        make_product("Calça Pantalona")
        response = client.get("/products", params={"ids": f"{wanted.id}, {uuid.uuid4()}"})
        assert [product["id"] for product in response.json()] == [wanted.id]


class TestCatalogAdmin:
    """Alterações no catálogo invalidam o cache das listagens."""

    def test_create_product_invalidates_list_cache(self, client, make_user, auth_headers):
        headers = auth_headers(make_user(role=models.UserRole.admin))
        assert client.get("/products").json() == []

        category = client.post("/admin/catalog/categories", json={"name": "Vestidos Longos"}, headers=headers)
        assert category.status_code == 201
        assert category.json()["slug"] == "vestidos-longos"

        created = client.post(
            "/admin/catalog/products",
            json={
                "name": "Vestido Longo Cetim",
                "price_cents": 28990,
                "category_id": category.json()["id"],
                "variants": [{"color": "Verde", "sizes": [{"size": "P", "stock": 3}]}],
            },
            headers=headers,
        )
        assert created.status_code == 201
        assert created.json()["slug"] == "vestido-longo-cetim"

        listed = client.get("/products").json()
        assert [product["name"] for product in listed] == ["Vestido Longo Cetim"]

    def test_duplicate_names_get_unique_slugs(self, client, make_user, auth_headers):
        headers = auth_headers(make_user(role=models.UserRole.admin))
        payload = {"name": "Blusa Básica", "price_cents": 5990}
        first = client.post("/admin/catalog/products", json=payload, headers=headers).json()
        second = client.post("/admin/catalog/products", json=payload, headers=headers).json()
        assert first["slug"] == "blusa-basica"
        assert second["slug"] == "blusa-basica-2"

    def test_delete_deactivates_product(self, client, db, make_user, make_product, auth_headers):
        headers = auth_headers(make_user(role=models.UserRole.admin))
        product = make_product()
        assert client.get(f"/products/{product.id}").status_code == 200

        assert client.delete(f"/admin/catalog/products/{product.id}", headers=headers).status_code == 204

        assert client.get(f"/products/{product.id}").status_code == 404
        db.expire_all()
        assert db.get(models.Product, product.id).is_active is False

    def test_customer_cannot_edit_catalog(self, client, make_user, auth_headers):
        response = client.post(
            "/admin/catalog/categories", json={"name": "Promo"}, headers=auth_headers(make_user())
        )
        assert response.status_code == 403


class TestTestimonials:
    def test_only_active_in_display_order(self, client, db):
        db.add_all(
            [
                models.Testimonial(id=str(uuid.uuid4()), name="Carla", text="Entrega rápida", display_order=2),
                models.Testimonial(id=str(uuid.uuid4()), name="Júlia", text="Peças lindas", display_order=1),
                models.Testimonial(
                    id=str(uuid.uuid4()), name="Oculta", text="Inativo", display_order=0, is_active=False
                ),
            ]
        )
        db.commit()
        names = [item["name"] for item in client.get("/testimonials").json()]
        assert names == ["Júlia", "Carla"]


class TestApplication:
    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}

    def test_security_headers(self, client):
        response = client.get("/auth/me")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"

    def test_login_rate_limit(self, client):
        payload = {"email": "ninguem@example.com", "password": "senha-errada-1"}
        statuses = [client.post("/auth/login", json=payload).status_code for _ in range(11)]
        assert statuses[:10] == [401] * 10
        assert statuses[10] == 429
