import unittest
from unittest.mock import patch

from recordkeeper.cascade import CascadeCoordinator
from recordkeeper.db import InMemoryRecordStore
from recordkeeper.documents import USERS, Dependent
from recordkeeper.errors import InfrastructureError
from recordkeeper.storage import InMemoryAssetStore

OWNER = "a" * 32
OTHER = "b" * 32


class CascadeCoordinatorTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryRecordStore()
        self.assets = InMemoryAssetStore()
        self.coordinator = CascadeCoordinator(self.store, self.assets, USERS.dependents)

    def add_product(self, name, owner):
        stored = self.assets.upload(b"img", f"products/{name}")
        return self.store.create(
            "products",
            {
                "product_name": name,
                "price": 1,
                "user": owner,
                "image": [
                    {
                        "external_id": stored.external_id,
                        "retrieval_url": stored.retrieval_url,
                        "original_name": f"{name}.png",
                    }
                ],
            },
        )

    def add_transaction(self, owner):
        return self.store.create(
            "transactions",
            {"user": owner, "product": ["c" * 32], "date": "2024-01-01T00:00:00"},
        )

    def test_removes_dependents_in_every_collection(self):
        self.add_product("Chair", OWNER)
        self.add_product("Desk", OWNER)
        kept = self.add_product("Lamp", OTHER)
        self.add_transaction(OWNER)
        other_tx = self.add_transaction(OTHER)

        counts = self.coordinator.cascade_delete(OWNER)

        self.assertEqual(counts, {"products": 2, "transactions": 1})
        self.assertEqual(self.store.find_many("products", "user", OWNER), [])
        self.assertEqual(self.store.find_many("transactions", "user", OWNER), [])
        self.assertIsNotNone(self.store.find_by_id("products", kept["id"]))
        self.assertIsNotNone(self.store.find_by_id("transactions", other_tx["id"]))

    def test_releases_assets_of_asset_bearing_dependents(self):
        self.add_product("Chair", OWNER)
        kept = self.add_product("Lamp", OTHER)

        self.coordinator.cascade_delete(OWNER)

        self.assertFalse(self.assets.exists("products/Chair"))
        self.assertTrue(self.assets.exists(kept["image"][0]["external_id"]))

    def test_is_idempotent(self):
        self.add_transaction(OWNER)
        self.coordinator.cascade_delete(OWNER)
        self.assertEqual(
            self.coordinator.cascade_delete(OWNER), {"products": 0, "transactions": 0}
        )

    def test_failing_collection_does_not_stop_others(self):
        self.add_transaction(OWNER)
        original = self.store.delete_many

        def flaky_delete_many(collection, foreign_key, value):
            if collection == "products":
                raise InfrastructureError("products shard down")
            return original(collection, foreign_key, value)

        with patch.object(self.store, "delete_many", side_effect=flaky_delete_many):
            with self.assertLogs("recordkeeper.cascade", level="ERROR"):
                counts = self.coordinator.cascade_delete(OWNER)

        self.assertEqual(counts, {"transactions": 1})
        self.assertEqual(self.store.find_many("transactions", "user", OWNER), [])

    def test_list_valued_foreign_keys_match_by_membership(self):
        coordinator = CascadeCoordinator(
            self.store, self.assets, [Dependent(collection="transactions", foreign_key="product")]
        )
        tx = self.store.create(
            "transactions",
            {"user": OTHER, "product": ["d" * 32, OWNER], "date": "2024-01-01T00:00:00"},
        )
        self.assertEqual(coordinator.cascade_delete(OWNER), {"transactions": 1})
        self.assertIsNone(self.store.find_by_id("transactions", tx["id"]))

    def test_no_dependents_is_a_no_op(self):
        self.assertEqual(CascadeCoordinator(self.store, self.assets, ()).cascade_delete(OWNER), {})


if __name__ == "__main__":
    unittest.main()
