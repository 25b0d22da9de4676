from decimal import Decimal

import pytest
from django.contrib.sessions.backends.signed_cookies import SessionStore

from .cart import Cart, CartLine, MemoryCartStorage, SessionCartStorage
from .errors import OutOfStock
from .models import Category
from .utils import base36, calculate_discount, format_price, generate_order_number, stock_status, unique_slug


def test_calculate_discount():
    assert calculate_discount(100, 75) == 25
    assert calculate_discount(Decimal("35990"), Decimal("25990")) == 28
    assert calculate_discount(None, 100) == 0
    assert calculate_discount(0, 100) == 0
    assert calculate_discount(100, 100) == 0
    assert calculate_discount(80, 100) == 0


def test_calculate_discount_rounds_half_up():
    # 12.5% off
    assert calculate_discount(200, 175) == 13


def test_stock_status_buckets():
    assert stock_status(0, 10) == "agotado"
    assert stock_status(1, 10) == "critico"
    assert stock_status(2, 10) == "bajo"
    assert stock_status(4, 10) == "bajo"
    assert stock_status(5, 10) == "disponible"


def test_format_price():
    assert format_price(Decimal("25990")) == "$25.990"
    assert format_price(1234567) == "$1.234.567"
    assert format_price(0) == "$0"


def test_order_number_shape():
    number = generate_order_number()
    prefix, millis, suffix = number.split("-")
    assert prefix == "PED"
    assert millis.isdigit()
    assert len(suffix) == 9 and suffix == suffix.upper()
    assert generate_order_number() != number


def test_base36():
    assert base36(0) == "0"
    assert base36(35) == "z"
    assert base36(36) == "10"


@pytest.mark.django_db
def test_unique_slug_appends_counter():
    Category.objects.create(name="Ropa Niños", slug="ropa-ninos")
    assert unique_slug(Category, "Ropa Niños") == "ropa-ninos-1"


# ---- cart ----

def _line(**kw):
    data = {"id": "p1", "nombre": "Camiseta", "precio": Decimal("25990"), "cantidad": 1, "stock": 5}
    data.update(kw)
    return CartLine(**data)


def test_cart_merges_same_product_size_color():
    cart = Cart(MemoryCartStorage())
    cart.add(_line(talla="M", color="Negro"))
    cart.add(_line(talla="M", color="Negro", cantidad=2))
    cart.add(_line(talla="L", color="Negro"))

    assert len(cart.lines) == 2
    assert cart.item_count() == 4
    assert cart.total() == Decimal("103960")


def test_cart_rejects_quantity_above_stock():
    cart = Cart(MemoryCartStorage())
    cart.add(_line(cantidad=4))
    with pytest.raises(OutOfStock) as exc:
        cart.add(_line(cantidad=2))
    assert "Solo quedan 5" in str(exc.value.detail)
    assert cart.item_count() == 4


def test_cart_update_quantity_zero_removes_line():
    cart = Cart(MemoryCartStorage())
    cart.add(_line(cantidad=2))
    cart.update_quantity("p1", 0)
    assert cart.lines == []


def test_cart_is_written_through_and_restored():
    storage = MemoryCartStorage()
    cart = Cart(storage)
    cart.add(_line(talla="S", color="Azul", cantidad=2))

    restored = Cart(storage)
    assert restored.item_count() == 2
    assert restored.lines[0].precio == Decimal("25990")
    assert restored.checkout_items() == [{"id": "p1", "cantidad": 2, "talla": "S", "color": "Azul"}]


def test_cart_discards_corrupt_storage():
    storage = MemoryCartStorage(initial=[{"id": "p1", "precio": "no-es-numero"}])
    cart = Cart(storage)
    assert cart.lines == []
    assert storage.data is None


def test_cart_clear():
    storage = MemoryCartStorage()
    cart = Cart(storage)
    cart.add(_line())
    cart.clear()
    assert cart.total() == 0
    assert storage.data == []


def test_session_storage_round_trip():
    session = SessionStore()
    cart = Cart(SessionCartStorage(session))
    cart.add(_line(cantidad=3))

    assert session.modified
    assert session["cart"][0]["precio"] == "25990"
    assert Cart(SessionCartStorage(session)).item_count() == 3

    cart.clear()
    SessionCartStorage(session).clear()
    assert "cart" not in session
