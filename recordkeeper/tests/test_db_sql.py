import unittest

from recordkeeper.db import SqlRecordStore
from recordkeeper.errors import DuplicateError, ValidationError

ASSET = {"external_id": "a", "retrieval_url": "https://x/a", "original_name": "a.png"}


class SqlRecordStoreTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL store logic.
    """

    def setUp(self):
        self.db = SqlRecordStore("sqlite+pysqlite:///:memory:")

    def create_product(self, name="Chair", owner="a" * 32, price=10):
        return self.db.create(
            "products",
            {"product_name": name, "price": price, "user": owner, "image": [ASSET]},
        )

    def test_create_and_find_by_id(self):
        created = self.create_product()
        self.assertRegex(created["id"], r"^[0-9a-f]{32}$")
        fetched = self.db.find_by_id("products", created["id"])
        self.assertEqual(fetched["product_name"], "Chair")
        self.assertEqual(fetched["image"], [ASSET])
        self.assertIsNone(self.db.find_by_id("products", "f" * 32))

    def test_create_validates_document(self):
        with self.assertRaises(ValidationError):
            self.db.create("products", {"product_name": "Chair", "price": 1, "user": "x"})

    def test_case_insensitive_lookup(self):
        created = self.create_product("Widget")
        self.assertEqual(
            self.db.find_one_case_insensitive("products", "product_name", "wIDGET")["id"],
            created["id"],
        )
        self.assertIsNone(
            self.db.find_one_case_insensitive(
                "products", "product_name", "widget", exclude_id=created["id"]
            )
        )

    def test_unique_key_backstop(self):
        self.create_product("Widget")
        with self.assertRaises(DuplicateError):
            self.create_product("WIDGET")

    def test_update_by_id_merges_and_validates(self):
        created = self.create_product()
        updated = self.db.update_by_id("products", created["id"], {"price": 12.5})
        self.assertEqual(updated["price"], 12.5)
        self.assertEqual(updated["product_name"], "Chair")
        self.assertEqual(updated["created_at"], created["created_at"])
        with self.assertRaises(ValidationError):
            self.db.update_by_id("products", created["id"], {"price": -1})
        self.assertEqual(self.db.find_by_id("products", created["id"])["price"], 12.5)

    def test_update_missing_returns_none(self):
        self.assertIsNone(self.db.update_by_id("products", "f" * 32, {"price": 1}))

    def test_rename_moves_unique_key(self):
        created = self.create_product("Chair")
        self.db.update_by_id("products", created["id"], {"product_name": "Stool"})
        self.assertIsNone(self.db.find_one_case_insensitive("products", "product_name", "chair"))
        self.create_product("Chair")

    def test_delete_by_id(self):
        created = self.create_product()
        self.assertTrue(self.db.delete_by_id("products", created["id"]))
        self.assertFalse(self.db.delete_by_id("products", created["id"]))

    def test_delete_many_by_foreign_key(self):
        self.create_product("Chair", owner="a" * 32)
        self.create_product("Desk", owner="a" * 32)
        kept = self.create_product("Lamp", owner="b" * 32)
        self.assertEqual(self.db.delete_many("products", "user", "a" * 32), 2)
        self.assertEqual(self.db.find_many("products", "user", "a" * 32), [])
        self.assertEqual([doc["id"] for doc in self.db.list_documents("products")], [kept["id"]])

    def test_list_valued_foreign_key(self):
        tx = self.db.create(
            "transactions",
            {"user": "a" * 32, "product": ["c" * 32, "d" * 32], "date": "2024-01-01T00:00:00"},
        )
        self.assertEqual(
            [doc["id"] for doc in self.db.find_many("transactions", "product", "d" * 32)],
            [tx["id"]],
        )
        self.assertEqual(self.db.delete_many("transactions", "product", "c" * 32), 1)

    def test_find_one_exact(self):
        self.db.create(
            "users",
            {
                "name": "alice",
                "email": "alice@example.com",
                "password": "hash",
                "image": [ASSET],
            },
        )
        self.assertEqual(
            self.db.find_one("users", "email", "alice@example.com")["name"], "alice"
        )
        self.assertIsNone(self.db.find_one("users", "email", "ALICE@example.com"))

    def test_list_documents_newest_first(self):
        first = self.create_product("A")
        second = self.create_product("B")
        docs = self.db.list_documents("products")
        self.assertEqual({doc["id"] for doc in docs}, {first["id"], second["id"]})
        self.assertGreaterEqual(docs[0]["created_at"], docs[1]["created_at"])


if __name__ == "__main__":
    unittest.main()
