import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import stripe
from django.conf import settings
from django.utils.module_loading import import_string

from .errors import InvalidSignature, PaymentGatewayError

logger = logging.getLogger("shop.checkout")


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


class PaymentGateway(Protocol):
    def create_checkout_session(self, order) -> CheckoutSession: ...
    def parse_webhook(self, payload: bytes, signature: str) -> dict: ...


def to_minor_units(amount) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


class StripeGateway:
    """Hosted Stripe Checkout plus webhook signature verification."""

    def __init__(self, api_key=None, webhook_secret=None, currency=None, public_url=None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.currency = currency or settings.STRIPE_CURRENCY
        self.public_url = (public_url or settings.PUBLIC_URL).rstrip("/")

    def _line_items(self, order):
        line_items = []
        for item in order.items.all():
            line_items.append({
                "quantity": item.quantity,
                "price_data": {
                    "currency": self.currency,
                    "unit_amount": to_minor_units(item.unit_price),
                    "product_data": {
                        "name": item.name,
                        "metadata": {
                            "producto_id": str(item.product_id),
                            "variante_id": str(item.variant_id or ""),
                            "talla": item.size,
                            "color": item.color,
                        },
                    },
                },
            })
        return line_items

    def create_checkout_session(self, order) -> CheckoutSession:
        if not self.api_key:
            raise PaymentGatewayError("Stripe no está configurado")
        metadata = {"pedido_id": str(order.pk)}
        shipping_name = "Envío gratis" if order.shipping == 0 else "Envío estándar"
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                idempotency_key=f"checkout-{order.pk}",
                mode="payment",
                payment_method_types=["card"],
                line_items=self._line_items(order),
                customer_email=order.customer_email,
                success_url=(
                    f"{self.public_url}/tienda/pago-exitoso"
                    f"?session_id={{CHECKOUT_SESSION_ID}}&pedido_id={order.pk}"
                ),
                cancel_url=f"{self.public_url}/tienda/carrito",
                shipping_address_collection={"allowed_countries": settings.SHOP_ALLOWED_SHIPPING_COUNTRIES},
                shipping_options=[{
                    "shipping_rate_data": {
                        "type": "fixed_amount",
                        "fixed_amount": {"amount": to_minor_units(order.shipping), "currency": self.currency},
                        "display_name": shipping_name,
                        "delivery_estimate": {
                            "minimum": {"unit": "business_day", "value": 3},
                            "maximum": {"unit": "business_day", "value": 7},
                        },
                    },
                }],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.error("stripe session creation failed for order %s: %s", order.number, e)
            raise PaymentGatewayError() from e
        return CheckoutSession(id=session.id, url=session.url)

    def parse_webhook(self, payload: bytes, signature: str) -> dict:
        if not signature or not self.webhook_secret:
            raise InvalidSignature()
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
            return json.loads(body)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("webhook signature verification failed: %s", e)
            raise InvalidSignature() from e


def get_gateway() -> PaymentGateway:
    return import_string(settings.SHOP_PAYMENT_GATEWAY)()
