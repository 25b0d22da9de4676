import logging

from .errors import OrderNotFound, OutOfStock
from .services import find_order_for_payment, mark_order_paid, mark_payment_failed

logger = logging.getLogger("shop.webhooks")


def _metadata_order_id(obj):
    return (obj.get("metadata") or {}).get("pedido_id")


def on_checkout_session_completed(session):
    order_id = _metadata_order_id(session)
    if not order_id:
        logger.error("session %s has no pedido_id metadata", session.get("id"))
        return
    mark_order_paid(order_id, payment_ref=session.get("payment_intent"))


def on_checkout_session_expired(session):
    order_id = _metadata_order_id(session)
    if not order_id:
        order_id = find_order_for_payment(session_id=session.get("id")).pk
    mark_payment_failed(order_id)


def on_payment_intent_succeeded(intent):
    logger.info("payment %s succeeded", intent.get("id"))


def on_payment_intent_failed(intent):
    order = find_order_for_payment(payment_ref=intent.get("id"), order_id=_metadata_order_id(intent))
    mark_payment_failed(order.pk)


HANDLERS = {
    "checkout.session.completed": on_checkout_session_completed,
    "checkout.session.expired": on_checkout_session_expired,
    "payment_intent.succeeded": on_payment_intent_succeeded,
    "payment_intent.payment_failed": on_payment_intent_failed,
}


def handle_event(event: dict) -> None:
    """Apply one verified gateway event.

    Conditions the gateway cannot fix by retrying are logged and swallowed so
    the delivery is still acknowledged.
    """
    kind = event.get("type")
    handler = HANDLERS.get(kind)
    if handler is None:
        logger.debug("ignoring event %s (%s)", event.get("id"), kind)
        return
    obj = (event.get("data") or {}).get("object") or {}
    try:
        handler(obj)
    except OrderNotFound:
        logger.error("event %s (%s): order not found", event.get("id"), kind)
    except OutOfStock as e:
        logger.error("event %s (%s): stock decrement rejected, needs manual reconciliation: %s",
                     event.get("id"), kind, e.detail)
