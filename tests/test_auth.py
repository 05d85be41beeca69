from femisse import models
from femisse.auth.dependencies import AUTH_COOKIE

from conftest import DEFAULT_PASSWORD


def register(client, email="maria@example.com", **extra):
    payload = {"name": "Maria Silva", "email": email, "password": DEFAULT_PASSWORD, **extra}
    return client.post("/auth/register", json=payload)


class TestRegister:
    def test_register_returns_token_and_cookie(self, client, db):
        response = register(client, email=" Maria@Example.com ", cpf="529.982.247-25", phone="(11) 98765-4321")

        assert response.status_code == 201
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["email"] == "maria@example.com"
        assert body["user"]["role"] == "customer"
        assert AUTH_COOKIE in response.cookies
        user = db.query(models.User).one()
        assert user.cpf == "52998224725"
        assert user.phone == "11987654321"
        assert user.password_hash != DEFAULT_PASSWORD

    def test_duplicate_email_is_case_insensitive(self, client):
        register(client)
        response = register(client, email="MARIA@example.com")
        assert response.status_code == 409

    def test_duplicate_cpf(self, client):
        register(client, cpf="52998224725")
        response = register(client, email="outra@example.com", cpf="529.982.247-25")
        assert response.status_code == 409
        assert response.json()["detail"] == "CPF já cadastrado"

    def test_invalid_cpf_is_rejected(self, client):
        response = register(client, cpf="111.111.111-11")
        assert response.status_code == 422


class TestLogin:
    """Login, sessão e logout."""

    def test_login_and_me(self, client, make_user):
        user = make_user("cliente@example.com")
        response = client.post("/auth/login", json={"email": "Cliente@example.com", "password": DEFAULT_PASSWORD})
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["id"] == user.id

    def test_wrong_password(self, client, make_user):
        make_user("cliente@example.com")
        response = client.post("/auth/login", json={"email": "cliente@example.com", "password": "senha-errada-1"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Credenciais inválidas"

    def test_inactive_user_cannot_login(self, client, make_user):
        make_user("inativa@example.com", is_active=False)
        response = client.post("/auth/login", json={"email": "inativa@example.com", "password": DEFAULT_PASSWORD})
        assert response.status_code == 401

    def test_me_requires_credentials(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer nao-e-um-jwt"})
        assert response.status_code == 401

    def test_logout_revokes_session(self, client, make_user, auth_headers):
        headers = auth_headers(make_user())
        assert client.get("/auth/me", headers=headers).status_code == 200

        response = client.post("/auth/logout", headers=headers)
        assert response.json() == {"ok": True}
        assert client.get("/auth/me", headers=headers).status_code == 401

    def test_cookie_authentication(self, client, make_user):
        make_user("cookie@example.com")
        client.post("/auth/login", json={"email": "cookie@example.com", "password": DEFAULT_PASSWORD})
        assert client.get("/auth/me").status_code == 200


class TestProfile:
    def test_update_profile(self, client, make_user, auth_headers):
        headers = auth_headers(make_user())
        response = client.patch("/users/me", json={"name": " Ana Lima ", "phone": "11 3456-7890"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["name"] == "Ana Lima"
        assert response.json()["phone"] == "1134567890"

    def test_admin_deactivates_user(self, client, make_user, auth_headers):
        admin = make_user(role=models.UserRole.admin)
        customer = make_user()
        customer_headers = auth_headers(customer)

        response = client.post(f"/users/{customer.id}/deactivate", headers=auth_headers(admin))

        assert response.status_code == 200
        assert client.get("/auth/me", headers=customer_headers).status_code == 401

    def test_customer_cannot_list_users(self, client, make_user, auth_headers):
        response = client.get("/users", headers=auth_headers(make_user()))
        assert response.status_code == 403
