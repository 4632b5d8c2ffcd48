"""Checkout: turns the cart plus a shipping form into a cash-on-delivery order.

State machine::

    IDLE -> FORM_OPEN -> SUBMITTING -> SUCCESS
                ^             |
                |             v
                +-------- FAILED

SUCCESS is only left through reset(). A FAILED attempt keeps the cart and
the form so it can be submitted again.
"""
import logging
import sqlite3
import threading
from enum import Enum
from typing import Callable, List, Optional

from .. import orders as orders_db
from ..errors import (
    CheckoutInProgress,
    PersistenceFailed,
    StoreError,
    ValidationFailed,
)
from ..schemas import Address, CheckoutForm, Order, OrderItem, OrderStatus
from .cart_service import CartService
from .identity import Identity, IdentityService

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("full_name", "phone", "address", "city", "state", "pincode")

Notifier = Callable[[str, str], None]


class CheckoutState(str, Enum):
    IDLE = "idle"
    FORM_OPEN = "form_open"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILED = "failed"


def _log_notification(level: str, message: str) -> None:
    if level == "error":
        logger.warning(f"⚠️ [CHECKOUT] {message}")
    else:
        logger.info(f"✅ [CHECKOUT] {message}")


def missing_fields(form: CheckoutForm) -> List[str]:
    return [name for name in REQUIRED_FIELDS if not getattr(form, name).strip()]


class CheckoutOrchestrator:
    def __init__(
        self,
        identity: IdentityService,
        cart: CartService,
        notify: Optional[Notifier] = None,
    ) -> None:
        self.identity = identity
        self.cart = cart
        self.notify = notify or _log_notification
        self.state = CheckoutState.IDLE
        self.form: Optional[CheckoutForm] = None
        self.last_order: Optional[Order] = None
        self.last_error: Optional[StoreError] = None
        self._lock = threading.Lock()
        self._dismissed = False
        identity.on_sign_out(self._on_sign_out)

    @property
    def is_checking_out(self) -> bool:
        return self.state == CheckoutState.SUBMITTING

    def open_form(self) -> CheckoutForm:
        if self.state == CheckoutState.SUBMITTING:
            raise CheckoutInProgress()
        if self.state == CheckoutState.SUCCESS:
            raise ValidationFailed("Order already placed, start a new checkout")

        if self.state != CheckoutState.FAILED or self.form is None:
            identity = self.identity.current
            self.form = CheckoutForm(
                email=(identity.email or "") if identity else "",
                full_name=(identity.full_name or "") if identity else "",
            )

        self.state = CheckoutState.FORM_OPEN
        return self.form

    def close_form(self) -> None:
        """Discards the form. An order already being placed is not rolled back."""
        if self.state == CheckoutState.SUBMITTING:
            self._dismissed = True
            return
        if self.state == CheckoutState.SUCCESS:
            return
        self.form = None
        self.last_error = None
        self.state = CheckoutState.IDLE

    def reset(self) -> None:
        if self.state == CheckoutState.SUBMITTING:
            raise CheckoutInProgress()
        self.state = CheckoutState.IDLE
        self.form = None
        self.last_order = None
        self.last_error = None
        self._dismissed = False

    def submit(self, form: Optional[CheckoutForm] = None) -> Order:
        if not self._lock.acquire(blocking=False):
            raise CheckoutInProgress()
        try:
            return self._submit(form)
        finally:
            self._lock.release()

    def _submit(self, form: Optional[CheckoutForm]) -> Order:
        if self.state not in (CheckoutState.FORM_OPEN, CheckoutState.FAILED):
            raise ValidationFailed("Checkout form is not open")

        if form is not None:
            self.form = form

        if not self.identity.is_authenticated:
            self.notify("error", "Please sign in to checkout")
        identity = self.identity.require()

        # Lines of products removed since the cart was read must not be ordered
        self.cart.load()
        if self.cart.is_empty():
            self.notify("error", "Your cart is empty")
            raise ValidationFailed("Your cart is empty")

        missing = missing_fields(self.form)
        if missing:
            self.notify("error", "Please fill in all required fields")
            raise ValidationFailed("Please fill in all required fields", fields=missing)

        lines = self._order_lines()
        total = self.cart.total
        if round(sum(line.price * line.quantity for line in lines), 2) != round(total, 2):
            raise ValidationFailed("Cart total does not match its items, reload the cart")

        self.state = CheckoutState.SUBMITTING
        self._dismissed = False
        logger.info(
            f"💳 [CHECKOUT] Placing order - User: {identity.id}, "
            f"Items: {len(lines)}, Total: {total:.2f}"
        )

        try:
            order = self._place_order(identity, lines, total)
        except StoreError as e:
            self.last_error = e
            if self._dismissed:
                self.form = None
                self.state = CheckoutState.IDLE
            else:
                self.state = CheckoutState.FAILED
                self.notify("error", "Failed to place order. Please try again.")
            raise

        self.state = CheckoutState.SUCCESS
        self.last_order = order
        self.last_error = None
        self.form = None
        if not self._dismissed:
            self.notify("success", "Order placed successfully!")
        return order

    def _order_lines(self) -> List[OrderItem]:
        # Prices are pinned here so later catalog changes leave the order alone
        return [
            OrderItem(
                product_id=item.product_id,
                product_name=item.product.name,
                quantity=item.quantity,
                price=item.product.price,
                size=item.size,
                color=item.color,
            )
            for item in self.cart.items
        ]

    def _address(self) -> Address:
        form = self.form
        return Address(
            full_name=form.full_name.strip(),
            email=form.email.strip() or None,
            phone=form.phone.strip(),
            address=form.address.strip(),
            city=form.city.strip(),
            state=form.state.strip(),
            pincode=form.pincode.strip(),
        )

    def _place_order(self, identity: Identity, lines: List[OrderItem], total: float) -> Order:
        # Shipping and billing are the same address, only one is collected
        address = self._address()
        try:
            order = orders_db.create_order(
                identity.id,
                total,
                shipping_address=address,
                billing_address=address,
                notes=self.form.notes.strip() or None,
            )
        except sqlite3.Error as e:
            logger.error(f"❌ Error creating order: {e}")
            raise PersistenceFailed("Failed to create order") from e

        try:
            orders_db.insert_order_items(order.id, lines)
        except sqlite3.Error as e:
            logger.error(f"❌ Error creating items of order {order.id}: {e}")
            self._mark_failed(order.id)
            raise PersistenceFailed("Failed to create order items") from e

        self.cart.clear()

        order.items = [line.model_copy(update={"order_id": order.id}) for line in lines]
        logger.info(f"🎊 [CHECKOUT] Order {order.id} placed for {identity.id}")
        return order

    def _mark_failed(self, order_id: int) -> None:
        try:
            orders_db.update_order_status(order_id, OrderStatus.failed)
            logger.warning(f"⚠️ Order {order_id} marked as failed")
        except sqlite3.Error as e:
            logger.error(f"❌ Order {order_id} left pending without items: {e}")

    def _on_sign_out(self) -> None:
        if self.state != CheckoutState.SUBMITTING:
            self.reset()
