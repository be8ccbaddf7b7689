import unittest

from fastapi.testclient import TestClient

from recordkeeper.app import create_app
from recordkeeper.db import InMemoryRecordStore
from recordkeeper.dependencies import get_asset_store, get_record_store
from recordkeeper.storage import InMemoryAssetStore

PNG = ("chair.png", b"\x89PNG\r\n", "image/png")


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_record_store()
        self.assets = get_asset_store()
        if isinstance(self.db, InMemoryRecordStore):
            self.db.reset()
        if isinstance(self.assets, InMemoryAssetStore):
            self.assets.reset()

    def create_user(self, name="alice", password="s3cret"):
        response = self.client.post(
            "/api/v1/users",
            data={"name": name, "email": f"{name}@example.com", "password": password},
            files=[("image", ("me.png", b"png", "image/png"))],
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["data"]

    def create_product(self, name="Chair", owner="a" * 32):
        return self.client.post(
            "/api/v1/products",
            data={"product_name": name, "price": "49.5", "user": owner},
            files=[("image", PNG)],
        )

    def test_product_lifecycle(self):
        owner = self.create_user()
        created = self.create_product(owner=owner["id"])
        self.assertEqual(created.status_code, 201, created.text)
        product = created.json()["data"]
        self.assertEqual(len(product["image"]), 1)
        external_id = product["image"][0]["external_id"]

        transaction = self.client.post(
            "/api/v1/transactions",
            json={"user": owner["id"], "product": [product["id"]], "date": "2024-05-01T12:00:00"},
        )
        self.assertEqual(transaction.status_code, 201, transaction.text)
        transaction_id = transaction.json()["data"]["id"]

        updated = self.client.patch(
            f"/api/v1/products/{product['id']}", data={"product_name": "Chair"}
        )
        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(updated.json()["data"]["image"], product["image"])

        deleted = self.client.delete(f"/api/v1/products/{product['id']}")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get(f"/api/v1/products/{product['id']}").status_code, 404)
        self.assertEqual(self.client.get(f"/api/v1/transactions/{transaction_id}").status_code, 404)
        self.assertFalse(self.assets.exists(external_id))

    def test_missing_image_is_rejected(self):
        response = self.client.post(
            "/api/v1/products",
            data={"product_name": "Chair", "price": "10", "user": "a" * 32},
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_duplicate_name_conflicts(self):
        self.assertEqual(self.create_product("widget").status_code, 201)
        response = self.create_product("Widget")
        self.assertEqual(response.status_code, 409)

    def test_error_statuses(self):
        self.assertEqual(self.client.get("/api/v1/products/not-an-id").status_code, 400)
        self.assertEqual(self.client.get(f"/api/v1/products/{'f' * 32}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/v1/users/{'f' * 32}").status_code, 404)

    def test_user_password_is_never_returned(self):
        user = self.create_user()
        self.assertNotIn("password", user)
        listed = self.client.get("/api/v1/users").json()["data"]
        self.assertTrue(all("password" not in item for item in listed))

    def test_login_logout_and_revoked_session(self):
        user = self.create_user()
        login = self.client.post(
            "/api/v1/login", json={"email": "alice@example.com", "password": "s3cret"}
        )
        self.assertEqual(login.status_code, 200, login.text)
        token = login.json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        changed = self.client.put(
            f"/api/v1/users/{user['id']}/password",
            json={"old_password": "s3cret", "new_password": "n3w", "confirm_password": "n3w"},
            headers=headers,
        )
        self.assertEqual(changed.status_code, 200, changed.text)

        self.assertEqual(self.client.post("/api/v1/logout", headers=headers).status_code, 200)
        again = self.client.put(
            f"/api/v1/users/{user['id']}/password",
            json={"old_password": "n3w", "new_password": "x", "confirm_password": "x"},
            headers=headers,
        )
        self.assertEqual(again.status_code, 401)

    def test_malformed_bearer_token_is_unauthorized(self):
        user = self.create_user()
        response = self.client.put(
            f"/api/v1/users/{user['id']}/password",
            json={"old_password": "s3cret", "new_password": "n3w", "confirm_password": "n3w"},
            headers={"Authorization": "Bearer caf\u00e9".encode("utf-8")},
        )
        self.assertEqual(response.status_code, 401, response.text)
        self.assertEqual(response.json()["success"], False)

    def test_password_change_requires_own_session(self):
        self.create_user()
        bob = self.create_user(name="bob", password="pb")
        login = self.client.post(
            "/api/v1/login", json={"email": "alice@example.com", "password": "s3cret"}
        )
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
        response = self.client.put(
            f"/api/v1/users/{bob['id']}/password",
            json={"old_password": "pb", "new_password": "n3w", "confirm_password": "n3w"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 401)

    def test_duplicate_email_conflicts(self):
        self.create_user()
        response = self.client.post(
            "/api/v1/users",
            data={"name": "other", "email": "alice@example.com", "password": "pw"},
            files=[("image", ("me.png", b"png", "image/png"))],
        )
        self.assertEqual(response.status_code, 409)

    def test_logout_without_session(self):
        self.assertEqual(self.client.post("/api/v1/logout").status_code, 401)

    def test_wrong_password(self):
        self.create_user()
        response = self.client.post(
            "/api/v1/login", json={"email": "alice@example.com", "password": "nope"}
        )
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":
    unittest.main()
