"""Integration tests for the admin and utility routes."""

import pytest

from gateway.tests.helpers.app import add_user, bearer, get_user, sign_in
from identity.roles import ADMIN, KNOWN_ROLES, RDF, SIGNIN


@pytest.fixture
def admin(client):
    user = add_user(client, "root", roles=[ADMIN])
    return user, bearer(sign_in(client, "root")["accessToken"])


class TestAdminUsers:
    def test_list_roles(self, client, admin):
        _, headers = admin

        response = client.get("/admin/roles", headers=headers)

        assert response.status_code == 200
        assert set(response.json()["data"]) == set(KNOWN_ROLES)

    def test_list_and_count(self, client, admin):
        _, headers = admin
        for name in ("ann", "bob", "cat"):
            add_user(client, name)

        page = client.post("/admin/users", json={"offset": 1, "records": 2}, headers=headers)
        matching = client.post("/admin/users", json={"query": "bob"}, headers=headers)
        stats = client.get("/admin/users/stats", headers=headers)

        assert len(page.json()["data"]) == 2
        assert [u["username"] for u in matching.json()["data"]] == ["bob"]
        assert matching.json()["data"][0]["roles"] == [SIGNIN]
        assert stats.json()["data"] == {"users": 4}

    def test_page_size_limit(self, client, admin):
        _, headers = admin

        response = client.post("/admin/users", json={"records": 5000}, headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "BAD_REQUEST"

    def test_add_user(self, client, admin):
        _, headers = admin

        response = client.post(
            "/admin/users/add",
            json={"username": "dee", "email": "dee@example.com", "password": "pw", "roles": [SIGNIN, RDF]},
            headers=headers,
        )

        assert response.status_code == 200
        created = response.json()["data"]
        assert created["emailVerifiedAt"] > 0
        assert created["roles"] == [RDF, SIGNIN]
        sign_in(client, "dee", "pw")

    def test_add_duplicate(self, client, admin):
        _, headers = admin

        response = client.post("/admin/users/add", json={"email": "root@example.com"}, headers=headers)

        assert response.status_code == 409

    def test_update_user(self, client, admin):
        _, headers = admin
        user = add_user(client, "ann", verified=False)

        response = client.post(
            "/admin/users/update",
            json={
                "uuid": user.uuid,
                "email": "ann2@example.com",
                "firstName": "Ann",
                "password": "new-pw",
                "roles": [SIGNIN, RDF],
                "emailIsVerified": True,
            },
            headers=headers,
        )

        assert response.status_code == 200
        updated = response.json()["data"]
        assert updated["email"] == "ann2@example.com"
        assert updated["firstName"] == "Ann"
        assert updated["emailVerifiedAt"] > 0
        assert updated["roles"] == [RDF, SIGNIN]
        sign_in(client, "ann", "new-pw")

    def test_update_unknown_user(self, client, admin):
        _, headers = admin

        response = client.post("/admin/users/update", json={"uuid": "ghost"}, headers=headers)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_delete_user(self, client, admin):
        _, headers = admin
        user = add_user(client, "ann")

        response = client.delete(f"/admin/users/delete/{user.uuid}", headers=headers)

        assert response.status_code == 200
        assert get_user(client, user.uuid) is None
        assert client.delete(f"/admin/users/delete/{user.uuid}", headers=headers).status_code == 404

    def test_cannot_delete_self(self, client, admin):
        user, headers = admin

        response = client.delete(f"/admin/users/delete/{user.uuid}", headers=headers)

        assert response.status_code == 400
        assert get_user(client, user.uuid) is not None

    def test_issue_api_key(self, client, admin):
        _, headers = admin
        user = add_user(client, "bot")

        response = client.post("/admin/users/apikey", json={"uuid": user.uuid}, headers=headers)

        assert response.status_code == 200
        raw_key = response.json()["data"]["apiKey"]
        assert client.post("/sessions/api/keys/signin", json={"key": raw_key}).status_code == 200


class TestUtils:
    def test_hash_password(self, client):
        response = client.get("/utils/passwords/hash", params={"password": "secret"})

        assert response.status_code == 200
        assert response.json()["data"]["hash"].startswith("simple$")

    @pytest.mark.parametrize("params", [{}, {"password": "x" * 73}])
    def test_hash_password_rejects(self, client, params):
        response = client.get("/utils/passwords/hash", params=params)

        assert response.status_code == 400

    @pytest.mark.parametrize(("params", "length"), [({}, 32), ({"l": "10"}, 10), ({"l": "1024"}, 1024)])
    def test_random_key(self, client, params, length):
        response = client.get("/utils/randkey", params=params)

        assert response.status_code == 200
        assert len(response.json()["data"]["key"]) == length

    @pytest.mark.parametrize("value", ["0", "1025", "abc"])
    def test_random_key_rejects(self, client, value):
        response = client.get("/utils/randkey", params={"l": value})

        assert response.status_code == 400
