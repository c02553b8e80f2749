# --- path bootstrap ---
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
# --- end path bootstrap ---

import time
import unittest
from unittest import mock

from pydantic import ValidationError

from auth import verify_password
from database import MemoryStorage


class TestSeedData(unittest.TestCase):

    def setUp(self):
        self.storage = MemoryStorage(admin_password="admin123")

    def test_admin_is_seeded_with_hashed_password(self):
        admin = self.storage.get_user_by_username("admin")
        self.assertIsNotNone(admin)
        self.assertTrue(admin.is_admin)
        self.assertNotEqual(admin.password_hash, "admin123")
        self.assertTrue(verify_password("admin123", admin.password_hash))

    def test_default_categories(self):
        slugs = [c.slug for c in self.storage.get_categories()]
        self.assertEqual(slugs, ["electronics", "clothing", "home", "beauty", "sports"])

    def test_unseeded_storage_is_empty(self):
        storage = MemoryStorage(seed=False)
        self.assertEqual(storage.get_categories(), [])
        self.assertIsNone(storage.get_user(1))

    def test_sample_products_only_into_empty_catalog(self):
        added = self.storage.seed_sample_products()
        self.assertGreater(added, 0)
        self.assertEqual(len(self.storage.get_products()), added)
        self.assertEqual(self.storage.seed_sample_products(), 0)


class TestCrud(unittest.TestCase):

    def setUp(self):
        self.storage = MemoryStorage(seed=False)
        self.electronics = self.storage.create_category({"name": "Electronics", "slug": "electronics"})
        self.home = self.storage.create_category({"name": "Home", "slug": "home"})

    def _product(self, name, **kw):
        data = {"name": name, "price": 10.0, "category_id": self.electronics.id, "inventory": 5}
        data.update(kw)
        return self.storage.create_product(data)

    def test_ids_are_sequential_per_collection(self):
        a = self._product("A")
        b = self._product("B")
        self.assertEqual((a.id, b.id), (1, 2))
        self.assertEqual(self.home.id, 2)
        self.storage.delete_product(b.id)
        self.assertEqual(self._product("C").id, 3)

    def test_create_product_sets_created_at(self):
        self.assertIsNotNone(self._product("A").created_at)

    def test_product_filters_combine(self):
        self._product("Laptop", description="Fast machine", featured=True)
        self._product("Phone", description="Pocket LAPTOP replacement")
        self._product("Lamp", category_id=self.home.id, featured=True)

        self.assertEqual(len(self.storage.get_products()), 3)
        self.assertEqual(len(self.storage.get_products(category_id=self.electronics.id)), 2)
        names = sorted(p.name for p in self.storage.get_products(search="laptop"))
        self.assertEqual(names, ["Laptop", "Phone"])
        featured = self.storage.get_products(category_id=self.electronics.id, search="laptop", featured=True)
        self.assertEqual([p.name for p in featured], ["Laptop"])
        self.assertEqual([p.name for p in self.storage.get_products(featured=False)], ["Phone"])

    def test_featured_products_limit(self):
        for i in range(4):
            self._product(f"P{i}", featured=True)
        self._product("Plain")
        self.assertEqual(len(self.storage.get_featured_products()), 4)
        self.assertEqual(len(self.storage.get_featured_products(2)), 2)

    def test_update_merges_fields(self):
        p = self._product("A", description="old")
        updated = self.storage.update_product(p.id, {"price": 12.5})
        self.assertEqual(updated.price, 12.5)
        self.assertEqual(updated.description, "old")
        self.assertIsNone(self.storage.update_product(999, {"price": 1.0}))

    def test_delete_reports_whether_row_removed(self):
        p = self._product("A")
        self.assertTrue(self.storage.delete_product(p.id))
        self.assertFalse(self.storage.delete_product(p.id))
        self.assertIsNone(self.storage.get_product(p.id))

    def test_returned_rows_are_copies(self):
        p = self._product("A")
        p.inventory = 0
        self.assertEqual(self.storage.get_product(p.id).inventory, 5)

    def test_create_order_with_items(self):
        order = self.storage.create_order(
            {"total_amount": 30.0, "shipping_address": "1 Main St", "status": "pending"},
            7,
            [{"product_id": 1, "quantity": 1, "price": 10.0}, {"product_id": 2, "quantity": 2, "price": 10.0}],
        )
        self.assertEqual(order.user_id, 7)
        items = self.storage.get_order_items(order.id)
        self.assertEqual([i.order_id for i in items], [order.id, order.id])
        self.assertEqual(self.storage.get_orders(7), [order])
        self.assertEqual(self.storage.get_orders(8), [])
        self.assertEqual(self.storage.update_order_status(order.id, "shipped").status, "shipped")

    def test_get_category_by_id(self):
        self.assertEqual(self.storage.get_category(self.home.id).slug, "home")
        self.assertIsNone(self.storage.get_category(99))

    def test_invalid_order_line_creates_nothing(self):
        with self.assertRaises(ValidationError):
            self.storage.create_order(
                {"total_amount": 10.0, "shipping_address": "1 Main St"},
                7,
                [{"product_id": 1, "quantity": 1, "price": 10.0}, {"product_id": 2, "quantity": 1}],
            )
        self.assertEqual(self.storage.get_orders(), [])
        self.assertEqual(self.storage.order_items.rows, {})

    def test_failed_item_insert_removes_order(self):
        real_create = self.storage.order_items.create
        calls = []

        def flaky_create(data):
            calls.append(data)
            if len(calls) == 2:
                raise RuntimeError("insert failed")
            return real_create(data)

        with mock.patch.object(self.storage.order_items, "create", side_effect=flaky_create):
            with self.assertRaises(RuntimeError):
                self.storage.create_order(
                    {"total_amount": 30.0, "shipping_address": "1 Main St"},
                    7,
                    [{"product_id": 1, "quantity": 1, "price": 10.0}, {"product_id": 2, "quantity": 2, "price": 10.0}],
                )
        self.assertEqual(self.storage.get_orders(), [])
        self.assertEqual(self.storage.order_items.rows, {})


class TestCart(unittest.TestCase):

    def setUp(self):
        self.storage = MemoryStorage(seed=False)

    def test_add_increments_existing_row(self):
        self.storage.add_to_cart(1, 10, 2)
        row = self.storage.add_to_cart(1, 10, 3)
        self.assertEqual(row.quantity, 5)
        self.assertEqual(len(self.storage.get_cart_items(1)), 1)

    def test_update_sets_absolute_quantity(self):
        self.storage.add_to_cart(1, 10, 2)
        self.assertEqual(self.storage.update_cart_item(1, 10, 7).quantity, 7)
        self.assertEqual(self.storage.get_cart_item(1, 10).quantity, 7)

    def test_update_without_row_returns_none(self):
        self.assertIsNone(self.storage.update_cart_item(1, 10, 3))
        self.assertEqual(self.storage.get_cart_items(1), [])

    def test_remove_is_idempotent(self):
        self.storage.add_to_cart(1, 10, 1)
        self.assertTrue(self.storage.remove_from_cart(1, 10))
        self.assertFalse(self.storage.remove_from_cart(1, 10))

    def test_clear_cart_leaves_other_users(self):
        self.storage.add_to_cart(1, 10, 1)
        self.storage.add_to_cart(1, 11, 1)
        self.storage.add_to_cart(2, 10, 4)
        self.assertTrue(self.storage.clear_cart(1))
        self.assertTrue(self.storage.clear_cart(1))
        self.assertEqual(self.storage.get_cart_items(1), [])
        self.assertEqual([r.quantity for r in self.storage.get_cart_items(2)], [4])


class TestTokens(unittest.TestCase):

    def test_revocation(self):
        storage = MemoryStorage(seed=False)
        self.assertFalse(storage.is_token_revoked("abc"))
        storage.revoke_token("abc")
        self.assertTrue(storage.is_token_revoked("abc"))

    def test_expired_revocations_are_dropped(self):
        storage = MemoryStorage(seed=False)
        storage.revoke_token("old", time.time() - 1)
        storage.revoke_token("fresh", time.time() + 60)
        self.assertNotIn("old", storage._revoked_tokens)
        self.assertFalse(storage.is_token_revoked("old"))
        self.assertTrue(storage.is_token_revoked("fresh"))


if __name__ == "__main__":
    unittest.main()
