"""Best-effort side effects of order transitions.

Handlers run after the surrounding transaction commits; their failures are
logged and never reach the caller.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction

from .models import Order
from .utils import format_price

logger = logging.getLogger("shop.notifications")
metrics_logger = logging.getLogger("shop.metrics")


def _run_safely(handler, order_id):
    try:
        handler(order_id)
    except Exception:
        logger.exception("notification handler %s failed (order=%s)", handler.__name__, order_id)


def dispatch(handler, order_id):
    transaction.on_commit(lambda: _run_safely(handler, order_id))


def send_order_confirmation(order_id):
    order = Order.objects.prefetch_related("items").get(pk=order_id)
    lines = [f"- {item.name} x{item.quantity}: {format_price(item.unit_price)}" for item in order.items.all()]
    body = "\n".join([
        f"Hola {order.customer_name},",
        "",
        f"Hemos recibido tu pedido #{order.number}.",
        "",
        *lines,
        "",
        f"Total: {format_price(order.total)}",
        "",
        "Te notificaremos cuando tu pedido sea enviado.",
    ])
    send_mail(
        subject=f"Confirmación de pedido #{order.number}",
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[order.customer_email],
    )
    logger.info("confirmation sent: order=%s to=%s", order.number, order.customer_email)


def send_shipping_notification(order_id):
    order = Order.objects.get(pk=order_id)
    if not order.customer_email:
        return
    tracking = f"\nNúmero de seguimiento: {order.tracking_number}" if order.tracking_number else ""
    send_mail(
        subject=f"Tu pedido #{order.number} fue enviado",
        message=f"Hola {order.customer_name},\n\nTu pedido #{order.number} está en camino.{tracking}\n",
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[order.customer_email],
    )
    logger.info("shipping notification sent: order=%s to=%s", order.number, order.customer_email)


def record_delivery(order_id):
    order = Order.objects.get(pk=order_id)
    metrics_logger.info(
        "order delivered: order=%s total=%s items=%d", order.number, order.total, order.items.count()
    )
