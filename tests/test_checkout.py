import sqlite3

import pytest

from app import cart as cart_db
from app import orders as orders_db
from app.errors import AuthRequired, CheckoutInProgress, PersistenceFailed, ValidationFailed
from app.product_utils import delete_product
from app.schemas import OrderStatus
from app.services.cart_service import CartService
from app.services.checkout import CheckoutOrchestrator, CheckoutState, missing_fields
from app.services.identity import IdentityService
from conftest import filled_form


@pytest.fixture
def notes():
    return []


@pytest.fixture
def checkout(identity_service, cart, notes):
    return CheckoutOrchestrator(
        identity_service,
        cart,
        notify=lambda level, message: notes.append((level, message)),
    )


@pytest.fixture
def stocked_cart(cart, make_product):
    cart.add_item(make_product(name="Silk Kurta", price=1500).id, 2, "M", "Red")
    cart.add_item(make_product(name="Cotton Dupatta", price=800).id, 1)
    return cart


def test_open_form_prefills_email(checkout):
    form = checkout.open_form()

    assert checkout.state == CheckoutState.FORM_OPEN
    assert form.email == "asha@example.com"
    assert form.full_name == ""


def test_successful_checkout(checkout, stocked_cart, identity, identity_service, notes):
    checkout.open_form()

    order = checkout.submit(filled_form())

    assert checkout.state == CheckoutState.SUCCESS
    assert order.total_amount == 3800
    assert order.status == OrderStatus.pending
    assert order.payment_method == "cod"
    assert order.shipping_address == order.billing_address
    assert order.shipping_address.pincode == "560001"
    assert [(i.product_name, i.quantity, i.price) for i in order.items] == [
        ("Silk Kurta", 2, 1500),
        ("Cotton Dupatta", 1, 800),
    ]
    assert notes[-1] == ("success", "Order placed successfully!")

    assert stocked_cart.is_empty()
    reloaded = CartService(identity_service)
    reloaded.load()
    assert reloaded.is_empty()

    stored = orders_db.get_order(order.id, user_id=identity.id)
    assert len(stored.items) == 2
    assert stored.items[0].size == "M"


def test_empty_cart_is_rejected_without_writing(checkout, notes):
    checkout.open_form()

    with pytest.raises(ValidationFailed):
        checkout.submit(filled_form())

    assert notes == [("error", "Your cart is empty")]
    assert orders_db.list_orders() == []
    assert checkout.state == CheckoutState.FORM_OPEN


def test_missing_pincode_is_rejected_and_cart_kept(checkout, stocked_cart, notes):
    checkout.open_form()

    with pytest.raises(ValidationFailed) as exc:
        checkout.submit(filled_form(pincode="  "))

    assert exc.value.fields == ["pincode"]
    assert notes == [("error", "Please fill in all required fields")]
    assert orders_db.list_orders() == []
    assert stocked_cart.item_count == 2
    assert checkout.state == CheckoutState.FORM_OPEN


def test_email_and_notes_are_optional():
    form = filled_form(email="", notes="")

    assert missing_fields(form) == []


def test_signed_out_checkout_requires_auth(cart, notes):
    checkout = CheckoutOrchestrator(
        IdentityService(),
        cart,
        notify=lambda level, message: notes.append((level, message)),
    )
    checkout.open_form()

    with pytest.raises(AuthRequired):
        checkout.submit(filled_form())

    assert notes == [("error", "Please sign in to checkout")]


def test_submit_without_open_form_is_rejected(checkout, stocked_cart):
    with pytest.raises(ValidationFailed):
        checkout.submit(filled_form())

    assert orders_db.list_orders() == []


def test_failed_items_insert_marks_order_failed_and_allows_retry(
    checkout, stocked_cart, notes, monkeypatch
):
    real_insert = orders_db.insert_order_items
    attempts = []

    def flaky_items(order_id, items):
        attempts.append(order_id)
        if len(attempts) == 1:
            raise sqlite3.OperationalError("disk I/O error")
        return real_insert(order_id, items)

    monkeypatch.setattr(orders_db, "insert_order_items", flaky_items)
    checkout.open_form()

    with pytest.raises(PersistenceFailed):
        checkout.submit(filled_form())

    assert checkout.state == CheckoutState.FAILED
    assert notes[-1] == ("error", "Failed to place order. Please try again.")
    assert stocked_cart.item_count == 2
    assert checkout.form.pincode == "560001"
    [failed] = orders_db.list_orders()
    assert failed.status == OrderStatus.failed
    assert failed.items == []

    order = checkout.submit()

    assert checkout.state == CheckoutState.SUCCESS
    assert stocked_cart.is_empty()
    assert len(order.items) == 2
    assert orders_db.get_order_totals() == {"total_orders": 1, "total_revenue": 3800.0}


def test_failed_order_insert_writes_nothing(checkout, stocked_cart, monkeypatch):
    def broken_order(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(orders_db, "create_order", broken_order)
    checkout.open_form()

    with pytest.raises(PersistenceFailed):
        checkout.submit(filled_form())

    assert checkout.state == CheckoutState.FAILED
    assert stocked_cart.item_count == 2


def test_second_submit_while_submitting_is_rejected(checkout, stocked_cart, monkeypatch):
    real_create_order = orders_db.create_order
    seen = {}

    def create_and_resubmit(*args, **kwargs):
        seen["checking_out"] = checkout.is_checking_out
        with pytest.raises(CheckoutInProgress):
            checkout.submit(filled_form())
        return real_create_order(*args, **kwargs)

    monkeypatch.setattr(orders_db, "create_order", create_and_resubmit)
    checkout.open_form()
    checkout.submit(filled_form())

    assert seen["checking_out"] is True
    assert len(orders_db.list_orders()) == 1
    assert checkout.state == CheckoutState.SUCCESS


def test_closing_form_during_submit_suppresses_notification(checkout, stocked_cart, notes, monkeypatch):
    real_create_order = orders_db.create_order

    def create_and_close(*args, **kwargs):
        checkout.close_form()
        return real_create_order(*args, **kwargs)

    monkeypatch.setattr(orders_db, "create_order", create_and_close)
    checkout.open_form()
    checkout.submit(filled_form())

    assert checkout.state == CheckoutState.SUCCESS
    assert notes == []
    assert len(orders_db.list_orders()) == 1


def test_success_is_left_only_through_reset(checkout, stocked_cart):
    checkout.open_form()
    checkout.submit(filled_form())

    with pytest.raises(ValidationFailed):
        checkout.open_form()
    checkout.close_form()
    assert checkout.state == CheckoutState.SUCCESS

    checkout.reset()

    assert checkout.state == CheckoutState.IDLE
    assert checkout.last_order is None


def test_close_form_discards_input(checkout):
    checkout.open_form()
    checkout.close_form()

    assert checkout.state == CheckoutState.IDLE
    assert checkout.form is None


def test_sign_out_resets_checkout(checkout, identity_service):
    checkout.open_form()

    identity_service.sign_out()

    assert checkout.state == CheckoutState.IDLE
    assert checkout.form is None


def test_removed_product_empties_cart_and_blocks_checkout(checkout, cart, make_product, notes):
    discontinued = make_product(name="Discontinued", price=999)
    cart.add_item(discontinued.id)
    delete_product(discontinued.id)
    checkout.open_form()

    with pytest.raises(ValidationFailed):
        checkout.submit(filled_form())

    assert cart.is_empty()
    assert notes == [("error", "Your cart is empty")]
    assert orders_db.list_orders() == []


def test_removed_product_is_left_out_of_order(checkout, cart, make_product):
    kept = make_product(name="Silk Kurta", price=1500)
    discontinued = make_product(name="Discontinued", price=999)
    cart.add_item(kept.id)
    cart.add_item(discontinued.id)
    delete_product(discontinued.id)
    checkout.open_form()

    order = checkout.submit(filled_form())

    assert [item.product_name for item in order.items] == ["Silk Kurta"]
    assert order.total_amount == 1500


def test_failed_cart_clear_keeps_cart_for_retry(checkout, stocked_cart, notes, monkeypatch):
    def broken_clear(user_id):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(cart_db, "clear_cart", broken_clear)
    checkout.open_form()

    with pytest.raises(PersistenceFailed):
        checkout.submit(filled_form())

    assert checkout.state == CheckoutState.FAILED
    assert notes[-1] == ("error", "Failed to place order. Please try again.")
    assert stocked_cart.item_count == 2
    assert stocked_cart.total == 3800
    assert checkout.form.pincode == "560001"
    assert checkout.last_order is None
