import io

import pytest
from PIL import Image

from app import db
from app.product_utils import create_product
from app.schemas import CheckoutForm, ProductIn
from app.services.cart_service import CartService
from app.services.identity import Identity, IdentityService
from app.services.sessions import sessions


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "store.db"))
    db.init_db()
    yield
    sessions.clear()


@pytest.fixture
def make_product():
    def _make(**overrides):
        data = {
            "name": "Silk Kurta",
            "category": "Kurtas",
            "price": 1500.0,
            "stock_quantity": 10,
        }
        data.update(overrides)
        return create_product(ProductIn(**data))
    return _make


@pytest.fixture
def identity():
    return Identity(id="user-1", email="asha@example.com")


@pytest.fixture
def identity_service(identity):
    return IdentityService(identity)


@pytest.fixture
def cart(identity_service):
    return CartService(identity_service)


def filled_form(**overrides) -> CheckoutForm:
    data = {
        "full_name": "Asha Rao",
        "email": "asha@example.com",
        "phone": "9876543210",
        "address": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }
    data.update(overrides)
    return CheckoutForm(**data)


def image_bytes(size=(400, 200), color=(255, 255, 255), fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()
