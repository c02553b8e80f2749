"""
Order placement and order status changes.

``place_order`` turns a user's stored cart into an order. It runs under the
storage transaction: every line is checked against current stock before any
inventory moves, so a rejected checkout leaves products, orders and the cart
exactly as they were.
"""
import logging
from typing import Dict, List, Tuple

from database import Storage
from schemas import ORDER_STATUSES, Order, OrderItem, Product

logger = logging.getLogger(__name__)

# Legal moves when transitions are enforced. Delivered and cancelled are final.
STATUS_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}


class StorefrontError(Exception):
    """Business-rule failure; ``status_code`` is what the API answers with."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EmptyCartError(StorefrontError):
    def __init__(self):
        super().__init__("Cart is empty")


class ProductNotFoundError(StorefrontError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class InsufficientInventoryError(StorefrontError):
    def __init__(self, product: Product, requested: int):
        super().__init__(
            f"Not enough inventory for product {product.name} "
            f"(requested {requested}, available {product.inventory})"
        )
        self.product_id = product.id
        self.available = product.inventory
        self.requested = requested


class OrderNotFoundError(StorefrontError):
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__("Order not found")
        self.order_id = order_id


class InvalidStatusError(StorefrontError):
    def __init__(self, status: str):
        super().__init__("Invalid status")
        self.status = status


class InvalidStatusTransitionError(StorefrontError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change order status from {current} to {requested}")
        self.current = current
        self.requested = requested


def _check_stock(storage: Storage, cart) -> Dict[int, Product]:
    products: Dict[int, Product] = {}
    requested: Dict[int, int] = {}
    for row in cart:
        product = storage.get_product(row.product_id)
        if product is None:
            raise ProductNotFoundError(row.product_id)
        products[product.id] = product
        requested[product.id] = requested.get(product.id, 0) + row.quantity
    for product_id, quantity in requested.items():
        product = products[product_id]
        if product.inventory < quantity:
            raise InsufficientInventoryError(product, quantity)
    return products


def place_order(storage: Storage, user_id: int, shipping_address: str) -> Tuple[Order, List[OrderItem]]:
    """Create an order from the user's cart, decrement stock and empty the cart.

    Raises:
        EmptyCartError: the user has nothing in the cart.
        ProductNotFoundError: a cart row points at a deleted product.
        InsufficientInventoryError: a product has less stock than requested.
    """
    with storage.transaction():
        cart = storage.get_cart_items(user_id)
        if not cart:
            raise EmptyCartError()
        products = _check_stock(storage, cart)

        stock = {pid: p.inventory for pid, p in products.items()}
        applied: Dict[int, int] = {}
        total = 0.0
        lines = []
        try:
            for row in cart:
                product = products[row.product_id]
                applied.setdefault(product.id, stock[product.id])
                stock[product.id] -= row.quantity
                storage.update_product(product.id, {"inventory": stock[product.id]})
                total += product.price * row.quantity
                lines.append({"product_id": product.id, "quantity": row.quantity, "price": product.price})
            order = storage.create_order(
                {"total_amount": total, "shipping_address": shipping_address, "status": "pending"},
                user_id,
                lines,
            )
        except Exception:
            for product_id, original in applied.items():
                storage.update_product(product_id, {"inventory": original})
            logger.exception("Order write failed; inventory restored", extra={"user_id": user_id})
            raise

        storage.clear_cart(user_id)
        items = storage.get_order_items(order.id)

    logger.info(
        "Order placed",
        extra={"user_id": user_id, "order_id": order.id, "total_amount": total, "lines": len(items)},
    )
    return order, items


def change_order_status(storage: Storage, order_id: int, status: str, strict: bool = False) -> Order:
    """Write a new status on an order.

    With ``strict`` off any of the known statuses may be written, which is how
    admins have always been able to correct orders. With it on only the moves
    in ``STATUS_TRANSITIONS`` are allowed.
    """
    if status not in ORDER_STATUSES:
        raise InvalidStatusError(status)
    with storage.transaction():
        order = storage.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status == status:
            return order
        if strict and status not in STATUS_TRANSITIONS[order.status]:
            raise InvalidStatusTransitionError(order.status, status)
        updated = storage.update_order_status(order_id, status)
    logger.info(
        "Order status changed",
        extra={"order_id": order_id, "from_status": order.status, "to_status": status},
    )
    return updated
