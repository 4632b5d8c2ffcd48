import logging
import sqlite3
import threading
from typing import List, Optional

from .. import cart as cart_db
from ..errors import PersistenceFailed, ValidationFailed
from ..product_utils import get_product
from ..schemas import CartItem, ProductSnapshot
from .identity import IdentityService

logger = logging.getLogger(__name__)


class CartService:
    """Shopping cart of the signed-in identity.

    Every mutation goes through the cart tables first; the in-memory items are
    only updated once the write succeeded. Totals are computed from the
    in-memory items on every read.

    One session's requests may run on different threads, so writes and the
    in-memory update that follows them happen under `_lock`.
    """

    def __init__(self, identity: IdentityService) -> None:
        self.identity = identity
        self._items: List[CartItem] = []
        self._lock = threading.RLock()
        identity.on_sign_out(self._forget)

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def total(self) -> float:
        return sum((item.product.price * item.quantity for item in self._items), 0.0)

    def is_empty(self) -> bool:
        return not self._items

    def get_item(self, item_id: int) -> Optional[CartItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def over_stock(self) -> List[int]:
        """Ids of lines asking for more than is in stock (display warning only)."""
        return [
            item.id for item in self._items
            if item.stock_quantity is not None and item.quantity > item.stock_quantity
        ]

    def load(self) -> List[CartItem]:
        """Reloads the cart of the current identity from storage."""
        with self._lock:
            identity = self.identity.current
            if identity is None:
                self._items = []
                return self.items

            try:
                rows = cart_db.get_cart(identity.id)
            except sqlite3.Error as e:
                logger.error(f"❌ Error loading cart for {identity.id}: {e}")
                raise PersistenceFailed("Failed to load cart") from e

            self._items = [CartItem(**row) for row in rows]
            return self.items

    def add_item(
        self,
        product_id: int,
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CartItem:
        identity = self.identity.require()

        if quantity < 1:
            raise ValidationFailed("Quantity must be at least 1", fields=["quantity"])

        try:
            product = get_product(product_id)
        except sqlite3.Error as e:
            raise PersistenceFailed("Failed to add item to cart") from e
        if product is None:
            raise ValidationFailed("Product not found", fields=["product_id"])

        with self._lock:
            try:
                item_id = cart_db.add_to_cart(identity.id, product_id, quantity, size, color)
            except sqlite3.Error as e:
                logger.error(f"❌ Error adding product {product_id} to cart: {e}")
                raise PersistenceFailed("Failed to add item to cart") from e

            existing = self.get_item(item_id)
            if existing is not None:
                existing.quantity += quantity
                item = existing
            else:
                item = CartItem(
                    id=item_id,
                    product_id=product_id,
                    quantity=quantity,
                    size=size,
                    color=color,
                    product=ProductSnapshot(
                        name=product.name,
                        price=product.price,
                        images=product.images,
                    ),
                    stock_quantity=product.stock_quantity,
                )
                self._items.append(item)

        logger.info(f"🛒 Added {quantity} x product {product_id} to cart of {identity.id}")
        return item

    def update_quantity(self, item_id: int, quantity: int) -> Optional[CartItem]:
        """Sets a line's quantity exactly. Anything below 1 removes the line."""
        if quantity < 1:
            self.remove_item(item_id)
            return None

        with self._lock:
            item = self.get_item(item_id)
            if item is None:
                logger.warning(f"⚠️ Cart item {item_id} not found, nothing to update")
                return None

            identity = self.identity.require()
            try:
                cart_db.update_cart_item_quantity(identity.id, item_id, quantity)
            except sqlite3.Error as e:
                logger.error(f"❌ Error updating cart item {item_id}: {e}")
                raise PersistenceFailed("Failed to update cart") from e

            item.quantity = quantity
            return item

    def remove_item(self, item_id: int) -> None:
        with self._lock:
            item = self.get_item(item_id)
            if item is None:
                return

            identity = self.identity.require()
            try:
                cart_db.remove_from_cart(identity.id, item_id)
            except sqlite3.Error as e:
                logger.error(f"❌ Error removing cart item {item_id}: {e}")
                raise PersistenceFailed("Failed to remove item from cart") from e

            self._items = [i for i in self._items if i.id != item_id]

    def clear(self) -> None:
        with self._lock:
            identity = self.identity.current
            if identity is None:
                self._items = []
                return

            try:
                cart_db.clear_cart(identity.id)
            except sqlite3.Error as e:
                logger.error(f"❌ Error clearing cart of {identity.id}: {e}")
                raise PersistenceFailed("Failed to clear cart") from e

            self._items = []
        logger.info(f"🗑️ Cart of {identity.id} cleared")

    def _forget(self) -> None:
        with self._lock:
            self._items = []
