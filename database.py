"""
Storage layer for the storefront.

``Storage`` is the repository interface business logic talks to; nothing
outside this module touches the collections directly. ``MemoryStorage`` keeps
every collection in a dict keyed by a sequential integer id, one counter per
collection. It is built once at startup and hung on ``app.state``.

All operations take the store's re-entrant lock. ``transaction()`` hands the
lock to a caller that needs several reads and writes to happen as one step
(see ``checkout.place_order``).
"""
from __future__ import annotations

import abc
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from auth import hash_password
from schemas import CartItem, Category, Order, OrderItem, Product, User

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {"name": "Electronics", "slug": "electronics"},
    {"name": "Clothing", "slug": "clothing"},
    {"name": "Home", "slug": "home"},
    {"name": "Beauty", "slug": "beauty"},
    {"name": "Sports", "slug": "sports"},
]

SAMPLE_PRODUCTS = [
    {
        "name": "Wireless Headphones",
        "description": "Over-ear noise cancelling headphones with 30h battery.",
        "price": 129.99,
        "image_url": "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?q=80&w=1200&auto=format&fit=crop",
        "category_slug": "electronics",
        "inventory": 25,
        "featured": True,
    },
    {
        "name": "Classic Denim Jacket",
        "description": "Mid-wash denim jacket with a relaxed fit.",
        "price": 79.5,
        "image_url": "https://images.unsplash.com/photo-1551028719-00167b16eac5?q=80&w=1200&auto=format&fit=crop",
        "category_slug": "clothing",
        "inventory": 40,
        "featured": False,
    },
    {
        "name": "Ceramic Table Lamp",
        "description": "Hand-glazed lamp with linen shade.",
        "price": 54.0,
        "image_url": None,
        "category_slug": "home",
        "inventory": 12,
        "featured": True,
    },
    {
        "name": "Yoga Mat",
        "description": "Non-slip 6mm mat with carry strap.",
        "price": 29.0,
        "image_url": None,
        "category_slug": "sports",
        "inventory": 60,
        "featured": False,
    },
]


class Storage(abc.ABC):
    """Repository interface over users, catalog, carts and orders."""

    @contextmanager
    def transaction(self) -> Iterator["Storage"]:
        yield self

    # Users
    @abc.abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abc.abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abc.abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abc.abstractmethod
    def create_user(self, data: Dict[str, Any]) -> User: ...

    @abc.abstractmethod
    def update_user(self, user_id: int, partial: Dict[str, Any]) -> Optional[User]: ...

    # Categories
    @abc.abstractmethod
    def get_categories(self) -> List[Category]: ...

    @abc.abstractmethod
    def get_category(self, category_id: int) -> Optional[Category]: ...

    @abc.abstractmethod
    def get_category_by_slug(self, slug: str) -> Optional[Category]: ...

    @abc.abstractmethod
    def create_category(self, data: Dict[str, Any]) -> Category: ...

    # Products
    @abc.abstractmethod
    def get_products(self, category_id: Optional[int] = None, search: Optional[str] = None,
                     featured: Optional[bool] = None) -> List[Product]: ...

    @abc.abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]: ...

    @abc.abstractmethod
    def get_featured_products(self, limit: Optional[int] = None) -> List[Product]: ...

    @abc.abstractmethod
    def create_product(self, data: Dict[str, Any]) -> Product: ...

    @abc.abstractmethod
    def update_product(self, product_id: int, partial: Dict[str, Any]) -> Optional[Product]: ...

    @abc.abstractmethod
    def delete_product(self, product_id: int) -> bool: ...

    # Orders
    @abc.abstractmethod
    def get_orders(self, user_id: Optional[int] = None) -> List[Order]: ...

    @abc.abstractmethod
    def get_order(self, order_id: int) -> Optional[Order]: ...

    @abc.abstractmethod
    def create_order(self, order: Dict[str, Any], user_id: int,
                     items: List[Dict[str, Any]]) -> Order: ...

    @abc.abstractmethod
    def update_order_status(self, order_id: int, status: str) -> Optional[Order]: ...

    @abc.abstractmethod
    def get_order_items(self, order_id: int) -> List[OrderItem]: ...

    # Cart
    @abc.abstractmethod
    def get_cart_items(self, user_id: int) -> List[CartItem]: ...

    @abc.abstractmethod
    def get_cart_item(self, user_id: int, product_id: int) -> Optional[CartItem]: ...

    @abc.abstractmethod
    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> CartItem: ...

    @abc.abstractmethod
    def update_cart_item(self, user_id: int, product_id: int, quantity: int) -> Optional[CartItem]: ...

    @abc.abstractmethod
    def remove_from_cart(self, user_id: int, product_id: int) -> bool: ...

    @abc.abstractmethod
    def clear_cart(self, user_id: int) -> bool: ...

    # Tokens
    @abc.abstractmethod
    def revoke_token(self, jti: str, expires_at: Optional[float] = None) -> None: ...

    @abc.abstractmethod
    def is_token_revoked(self, jti: str) -> bool: ...


class _Collection:
    """Rows keyed by id, plus the counter handing out the next id."""

    def __init__(self, model):
        self.model = model
        self.rows: Dict[int, Any] = {}
        self._next_id = 1

    def get(self, row_id: int):
        row = self.rows.get(row_id)
        return row.model_copy() if row is not None else None

    def list(self, predicate=None) -> List[Any]:
        return [r.model_copy() for r in self.rows.values() if predicate is None or predicate(r)]

    def find(self, predicate):
        for r in self.rows.values():
            if predicate(r):
                return r.model_copy()
        return None

    def create(self, data: Dict[str, Any]):
        row = self.model(id=self._next_id, **data)
        self._next_id += 1
        self.rows[row.id] = row
        return row.model_copy()

    def update(self, row_id: int, partial: Dict[str, Any]):
        row = self.rows.get(row_id)
        if row is None:
            return None
        partial = {k: v for k, v in partial.items() if k != "id"}
        row = row.model_copy(update=partial)
        self.rows[row_id] = row
        return row.model_copy()

    def delete(self, row_id: int) -> bool:
        return self.rows.pop(row_id, None) is not None


class MemoryStorage(Storage):
    """In-process storage. Contents are lost when the process exits."""

    def __init__(self, admin_password: str = "admin123", seed: bool = True):
        self._lock = threading.RLock()
        self.users = _Collection(User)
        self.categories = _Collection(Category)
        self.products = _Collection(Product)
        self.orders = _Collection(Order)
        self.order_items = _Collection(OrderItem)
        self.cart_items = _Collection(CartItem)
        self._revoked_tokens: Dict[str, Optional[float]] = {}
        if seed:
            self._seed_defaults(admin_password)

    def _seed_defaults(self, admin_password: str) -> None:
        self.users.create({
            "username": "admin",
            "email": "admin@shopsmart.com",
            "password_hash": hash_password(admin_password),
            "name": "Admin User",
            "is_admin": True,
        })
        for cat in DEFAULT_CATEGORIES:
            self.categories.create(cat)

    @contextmanager
    def transaction(self) -> Iterator["MemoryStorage"]:
        with self._lock:
            yield self

    # Users
    def get_user(self, user_id):
        with self._lock:
            return self.users.get(user_id)

    def get_user_by_username(self, username):
        with self._lock:
            return self.users.find(lambda u: u.username == username)

    def get_user_by_email(self, email):
        email = email.lower()
        with self._lock:
            return self.users.find(lambda u: u.email.lower() == email)

    def create_user(self, data):
        data = dict(data)
        data["is_admin"] = False
        data.setdefault("address", None)
        data.setdefault("phone", None)
        with self._lock:
            return self.users.create(data)

    def update_user(self, user_id, partial):
        with self._lock:
            return self.users.update(user_id, partial)

    # Categories
    def get_categories(self):
        with self._lock:
            return self.categories.list()

    def get_category(self, category_id):
        with self._lock:
            return self.categories.get(category_id)

    def get_category_by_slug(self, slug):
        with self._lock:
            return self.categories.find(lambda c: c.slug == slug)

    def create_category(self, data):
        with self._lock:
            return self.categories.create(data)

    # Products
    def get_products(self, category_id=None, search=None, featured=None):
        term = search.lower() if search else None

        def matches(p: Product) -> bool:
            if category_id is not None and p.category_id != category_id:
                return False
            if term and term not in p.name.lower() and term not in (p.description or "").lower():
                return False
            if featured is not None and p.featured != featured:
                return False
            return True

        with self._lock:
            return self.products.list(matches)

    def get_product(self, product_id):
        with self._lock:
            return self.products.get(product_id)

    def get_featured_products(self, limit=None):
        with self._lock:
            products = self.products.list(lambda p: p.featured)
        return products[:limit] if limit else products

    def create_product(self, data):
        data = dict(data)
        data.setdefault("created_at", datetime.utcnow())
        with self._lock:
            return self.products.create(data)

    def update_product(self, product_id, partial):
        with self._lock:
            return self.products.update(product_id, partial)

    def delete_product(self, product_id):
        with self._lock:
            return self.products.delete(product_id)

    # Orders
    def get_orders(self, user_id=None):
        with self._lock:
            if user_id is None:
                return self.orders.list()
            return self.orders.list(lambda o: o.user_id == user_id)

    def get_order(self, order_id):
        with self._lock:
            return self.orders.get(order_id)

    def create_order(self, order, user_id, items):
        data = dict(order)
        data["user_id"] = user_id
        data.setdefault("created_at", datetime.utcnow())
        # Reject bad lines before the order row exists.
        for item in items:
            OrderItem.model_validate({**item, "id": 0, "order_id": 0})
        with self._lock:
            created = self.orders.create(data)
            item_ids = []
            try:
                for item in items:
                    item_ids.append(self.order_items.create({**item, "order_id": created.id}).id)
            except Exception:
                for item_id in item_ids:
                    self.order_items.delete(item_id)
                self.orders.delete(created.id)
                raise
        return created

    def update_order_status(self, order_id, status):
        with self._lock:
            return self.orders.update(order_id, {"status": status})

    def get_order_items(self, order_id):
        with self._lock:
            return self.order_items.list(lambda i: i.order_id == order_id)

    # Cart
    def get_cart_items(self, user_id):
        with self._lock:
            return self.cart_items.list(lambda i: i.user_id == user_id)

    def _find_cart_row(self, user_id, product_id):
        return self.cart_items.find(lambda i: i.user_id == user_id and i.product_id == product_id)

    def get_cart_item(self, user_id, product_id):
        with self._lock:
            return self._find_cart_row(user_id, product_id)

    def add_to_cart(self, user_id, product_id, quantity):
        with self._lock:
            existing = self._find_cart_row(user_id, product_id)
            if existing is not None:
                return self.cart_items.update(existing.id, {"quantity": existing.quantity + quantity})
            return self.cart_items.create({"user_id": user_id, "product_id": product_id, "quantity": quantity})

    def update_cart_item(self, user_id, product_id, quantity):
        with self._lock:
            existing = self._find_cart_row(user_id, product_id)
            if existing is None:
                return None
            return self.cart_items.update(existing.id, {"quantity": quantity})

    def remove_from_cart(self, user_id, product_id):
        with self._lock:
            existing = self._find_cart_row(user_id, product_id)
            if existing is None:
                return False
            return self.cart_items.delete(existing.id)

    def clear_cart(self, user_id):
        with self._lock:
            for row_id in [i.id for i in self.cart_items.rows.values() if i.user_id == user_id]:
                self.cart_items.delete(row_id)
        return True

    # Tokens
    def revoke_token(self, jti, expires_at=None):
        with self._lock:
            self._prune_revoked()
            self._revoked_tokens[jti] = expires_at

    def is_token_revoked(self, jti):
        with self._lock:
            self._prune_revoked()
            return jti in self._revoked_tokens

    def _prune_revoked(self):
        # Expired tokens are rejected by decode_token, so their entries can go.
        now = time.time()
        for jti in [j for j, exp in self._revoked_tokens.items() if exp is not None and exp <= now]:
            del self._revoked_tokens[jti]

    def seed_sample_products(self) -> int:
        """Insert the demo catalog when no products exist. Returns rows added."""
        with self._lock:
            if self.products.rows:
                return 0
            added = 0
            for sample in SAMPLE_PRODUCTS:
                sample = dict(sample)
                category = self.get_category_by_slug(sample.pop("category_slug"))
                if category is None:
                    category = (self.get_category_by_slug("general")
                                or self.create_category({"name": "General", "slug": "general"}))
                self.create_product({**sample, "category_id": category.id})
                added += 1
        logger.info("Seeded sample products", extra={"count": added})
        return added
