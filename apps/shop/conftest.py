import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from .errors import PaymentGatewayError
from .gateway import CheckoutSession, StripeGateway
from .models import Category, Product, Usuario

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(StripeGateway):
    """Stripe adapter with session creation stubbed; webhook verification stays real."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET, currency="cop",
                         public_url="http://testserver")
        self.created = []
        self.fail = False

    def create_checkout_session(self, order):
        if self.fail:
            raise PaymentGatewayError()
        session = CheckoutSession(id=f"cs_test_{len(self.created) + 1}",
                                  url=f"https://checkout.stripe.test/pay/{order.pk}")
        self.created.append((session, order))
        return session


def sign(payload: bytes, secret=WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def event_body(kind, obj, event_id="evt_test_1") -> bytes:
    return json.dumps({"id": event_id, "type": kind, "data": {"object": obj}}).encode()


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr("apps.shop.views.get_gateway", lambda: fake)
    return fake


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def admin_user():
    return Usuario.objects.create_user(
        "admin", email="admin@tienda.com", password="pw", role=Usuario.Role.ADMIN, name="Administrador"
    )


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_login(admin_user)
    return client


@pytest.fixture
def category():
    return Category.objects.create(name="Camisetas", slug="camisetas")


@pytest.fixture
def make_product(category):
    counter = {"n": 0}

    def make(**kwargs):
        counter["n"] += 1
        defaults = {
            "name": f"Producto {counter['n']}",
            "slug": f"producto-{counter['n']}",
            "sku": f"SKU-{counter['n']:03d}",
            "price": Decimal("25990"),
            "stock": 5,
            "category": category,
            "short_description": "Camiseta de algodón",
        }
        defaults.update(kwargs)
        return Product.objects.create(**defaults)

    return make


@pytest.fixture
def product(make_product):
    return make_product(name="Camiseta Básica", slug="camiseta-basica", sku="CAM-001")


@pytest.fixture
def checkout_payload():
    def build(items):
        return {
            "items": items,
            "customer": {"email": "cliente@example.com", "name": "Ana Pérez", "phone": "3001234567"},
            "shippingAddress": {"line1": "Calle 1 # 2-3", "city": "Bogotá", "state": "DC",
                                "postal_code": "110111", "country": "CO"},
        }

    return build
