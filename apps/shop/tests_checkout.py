import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from .errors import OutOfStock, PaymentGatewayError, ProductNotFound
from .gateway import StripeGateway
from .models import Order, OrderItem, Product, Variant
from .services import compute_shipping, create_order, start_checkout

pytestmark = pytest.mark.django_db

URL = "/api/pagos/crear-sesion"
CUSTOMER = {"email": "cliente@example.com", "name": "Ana Pérez"}
ADDRESS = {"line1": "Calle 1 # 2-3", "city": "Bogotá", "country": "CO"}


def test_checkout_creates_pending_order_with_catalog_prices(api_client, gateway, product, checkout_payload):
    resp = api_client.post(URL, checkout_payload([{"id": str(product.pk), "cantidad": 2}]), format="json")

    assert resp.status_code == 201
    body = resp.json()
    assert body["subtotal"] == 51980
    assert body["envio"] == 10000
    assert body["total"] == 61980
    assert body["estadoPago"] == "PENDIENTE"
    assert body["sessionId"] == "cs_test_1"
    assert body["redirectUrl"].startswith("https://checkout.stripe.test/")

    order = Order.objects.get(pk=body["orderId"])
    assert order.number == body["orderNumber"]
    assert order.stripe_session_id == "cs_test_1"
    assert order.status == Order.Status.PENDIENTE
    assert order.items.get().unit_price == Decimal("25990")
    product.refresh_from_db()
    assert product.stock == 5  # stock moves only on payment


def test_checkout_ignores_client_prices(api_client, gateway, product, checkout_payload):
    item = {"id": str(product.pk), "cantidad": 1, "precio": 1, "subtotal": 1}
    payload = checkout_payload([item])
    payload["total"] = 1

    resp = api_client.post(URL, payload, format="json")

    assert resp.status_code == 201
    assert resp.json()["subtotal"] == 25990


def test_checkout_out_of_stock_creates_nothing(api_client, gateway, product, checkout_payload):
    resp = api_client.post(URL, checkout_payload([{"id": str(product.pk), "cantidad": 6}]), format="json")

    assert resp.status_code == 400
    assert "Stock insuficiente" in resp.json()["error"]
    assert Order.objects.count() == 0
    assert OrderItem.objects.count() == 0
    assert gateway.created == []


def test_checkout_stock_check_sums_repeated_lines(product):
    items = [{"product_id": product.pk, "quantity": 3}, {"product_id": product.pk, "quantity": 3}]
    with pytest.raises(OutOfStock):
        create_order(items=items, customer=CUSTOMER, shipping_address=ADDRESS)
    assert Order.objects.count() == 0


def test_checkout_empty_cart(api_client, gateway, checkout_payload):
    resp = api_client.post(URL, checkout_payload([]), format="json")

    assert resp.status_code == 400
    assert resp.json()["error"] == "El carrito está vacío"
    assert Order.objects.count() == 0


def test_checkout_unknown_product(api_client, gateway, checkout_payload):
    resp = api_client.post(URL, checkout_payload([{"id": str(uuid.uuid4()), "cantidad": 1}]), format="json")

    assert resp.status_code == 404
    assert Order.objects.count() == 0


def test_checkout_inactive_product_is_not_sold(product):
    Product.objects.filter(pk=product.pk).update(is_active=False)
    with pytest.raises(ProductNotFound):
        create_order(items=[{"product_id": product.pk, "quantity": 1}], customer=CUSTOMER, shipping_address=ADDRESS)


def test_checkout_invalid_payload(api_client, gateway, product):
    resp = api_client.post(URL, {"items": [{"id": str(product.pk), "cantidad": 0}]}, format="json")

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Datos inválidos"
    assert "customer" in body["details"]


def test_checkout_accepts_storefront_form_address(api_client, gateway, product):
    # what the storefront form sends: country name as typed, blank city when left empty
    payload = {
        "items": [{"id": str(product.pk), "cantidad": 1, "talla": "", "color": ""}],
        "customer": {"email": "cliente@example.com", "name": "Ana Pérez", "phone": ""},
        "shippingAddress": {"line1": "Calle 10 # 5-20", "city": "", "state": "", "postal_code": "",
                            "country": "Colombia"},
    }

    resp = api_client.post(URL, payload, format="json")

    assert resp.status_code == 201
    order = Order.objects.get(pk=resp.json()["orderId"])
    assert order.shipping_address["country"] == "Colombia"
    assert order.shipping_address["line1"] == "Calle 10 # 5-20"
    assert order.customer_phone == ""


def test_checkout_address_without_country(api_client, gateway, product):
    payload = {
        "items": [{"id": str(product.pk), "cantidad": 1}],
        "customer": {"email": "cliente@example.com", "name": "Ana Pérez"},
        "shippingAddress": {"line1": "Carrera 7 # 12-40"},
    }

    assert api_client.post(URL, payload, format="json").status_code == 201


def test_variant_price_and_stock(product):
    variant = Variant.objects.create(product=product, size="M", color="Negro", stock=1,
                                     price=Decimal("30000"), sku="CAM-001-M-NEG")

    order = create_order(
        items=[{"product_id": product.pk, "quantity": 1, "size": "M", "color": "Negro"}],
        customer=CUSTOMER, shipping_address=ADDRESS,
    )
    item = order.items.get()
    assert item.variant_id == variant.pk
    assert item.unit_price == Decimal("30000")

    with pytest.raises(OutOfStock):
        create_order(
            items=[{"product_id": product.pk, "quantity": 2, "size": "M", "color": "Negro"}],
            customer=CUSTOMER, shipping_address=ADDRESS,
        )


def test_unknown_variant_falls_back_to_product(product):
    order = create_order(
        items=[{"product_id": product.pk, "quantity": 1, "size": "XXL", "color": "Rosa"}],
        customer=CUSTOMER, shipping_address=ADDRESS,
    )
    item = order.items.get()
    assert item.variant_id is None
    assert item.unit_price == product.price
    assert item.size == "XXL"


def test_shipping_is_free_above_threshold(settings):
    settings.SHOP_FREE_SHIPPING_THRESHOLD = Decimal("100000")
    assert compute_shipping(Decimal("100000")) == Decimal("10000")
    assert compute_shipping(Decimal("100001")) == 0


def test_gateway_failure_leaves_order_pending(api_client, gateway, product, checkout_payload):
    gateway.fail = True

    resp = api_client.post(URL, checkout_payload([{"id": str(product.pk), "cantidad": 1}]), format="json")

    assert resp.status_code == 500
    assert resp.json()["error"] == "Error al crear sesión de pago"
    order = Order.objects.get()
    assert order.payment_status == Order.PaymentStatus.PENDIENTE
    assert order.stripe_session_id is None


def test_checkout_links_authenticated_user(admin_client, admin_user, gateway, product, checkout_payload):
    resp = admin_client.post(URL, checkout_payload([{"id": str(product.pk), "cantidad": 1}]), format="json")

    assert resp.status_code == 201
    assert Order.objects.get().user == admin_user


def test_stripe_session_request(monkeypatch, product, settings):
    settings.SHOP_ALLOWED_SHIPPING_COUNTRIES = ["CO"]
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_live_1", url="https://stripe.test/s")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    gateway = StripeGateway(api_key="sk_test_x", webhook_secret="whsec_x", currency="cop",
                            public_url="https://tienda.test/")

    result = start_checkout(
        items=[{"product_id": product.pk, "quantity": 2}], customer=CUSTOMER, shipping_address=ADDRESS,
        gateway=gateway,
    )

    assert result.session.id == "cs_live_1"
    order = result.order
    assert captured["metadata"] == {"pedido_id": str(order.pk)}
    assert captured["payment_intent_data"] == {"metadata": {"pedido_id": str(order.pk)}}
    assert captured["idempotency_key"] == f"checkout-{order.pk}"
    assert captured["customer_email"] == "cliente@example.com"
    assert captured["cancel_url"] == "https://tienda.test/tienda/carrito"
    (line,) = captured["line_items"]
    assert line["quantity"] == 2
    assert line["price_data"]["unit_amount"] == 2599000
    assert line["price_data"]["currency"] == "cop"
    fee = captured["shipping_options"][0]["shipping_rate_data"]["fixed_amount"]
    assert fee == {"amount": 1000000, "currency": "cop"}


def test_stripe_error_becomes_gateway_error(monkeypatch, product):
    def boom(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", boom)
    gateway = StripeGateway(api_key="sk_test_x", webhook_secret="whsec_x")

    with pytest.raises(PaymentGatewayError):
        start_checkout(items=[{"product_id": product.pk, "quantity": 1}], customer=CUSTOMER,
                       shipping_address=ADDRESS, gateway=gateway)
    assert Order.objects.get().payment_status == Order.PaymentStatus.PENDIENTE
