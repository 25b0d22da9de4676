import logging
import threading
import uuid

import pytest
from django.db import connection

from .conftest import event_body, sign
from .errors import OutOfStock
from .models import Order, Product, Variant
from .services import create_order, mark_order_paid, start_checkout
from .transactions import retry_on_tx_failure

pytestmark = pytest.mark.django_db

URL = "/api/webhooks/stripe"


@pytest.fixture
def order(product):
    return create_order(
        items=[{"product_id": product.pk, "quantity": 2}],
        customer={"email": "cliente@example.com", "name": "Ana Pérez"},
        shipping_address={"line1": "Calle 1", "city": "Bogotá", "country": "CO"},
    )


def deliver(client, body, signature=None):
    return client.post(URL, data=body, content_type="application/json",
                       HTTP_STRIPE_SIGNATURE=signature if signature is not None else sign(body))


def completed(order, payment_intent="pi_test_1", event_id="evt_test_1"):
    return event_body("checkout.session.completed", {
        "id": "cs_test_1",
        "object": "checkout.session",
        "payment_intent": payment_intent,
        "metadata": {"pedido_id": str(order.pk)},
    }, event_id=event_id)


def test_completed_session_marks_paid_and_decrements_stock(api_client, gateway, order, product):
    resp = deliver(api_client, completed(order))

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    order.refresh_from_db()
    assert order.is_paid
    assert order.stripe_payment_id == "pi_test_1"
    product.refresh_from_db()
    assert product.stock == 3


def test_redelivery_is_idempotent(api_client, gateway, order, product):
    body = completed(order)
    deliver(api_client, body)
    resp = deliver(api_client, body)

    assert resp.status_code == 200
    product.refresh_from_db()
    assert product.stock == 3
    assert Order.objects.get(pk=order.pk).payment_status == Order.PaymentStatus.PAGADO


def test_mark_order_paid_reports_repeat(order):
    assert mark_order_paid(order.pk, payment_ref="pi_1") is True
    assert mark_order_paid(order.pk, payment_ref="pi_1") is False


def test_invalid_signature_rejected(api_client, gateway, order, product):
    body = completed(order)

    resp = deliver(api_client, body, signature=sign(body, secret="whsec_other"))

    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid signature"
    order.refresh_from_db()
    assert order.payment_status == Order.PaymentStatus.PENDIENTE
    product.refresh_from_db()
    assert product.stock == 5


def test_missing_signature_rejected(api_client, gateway, order):
    resp = deliver(api_client, completed(order), signature="")
    assert resp.status_code == 400


def test_tampered_body_rejected(api_client, gateway, order):
    body = completed(order)
    signature = sign(body)
    tampered = body.replace(b"pi_test_1", b"pi_evil_1")

    resp = deliver(api_client, tampered, signature=signature)

    assert resp.status_code == 400


def test_expired_session_marks_failed(api_client, gateway, order):
    body = event_body("checkout.session.expired", {"id": "cs_test_1", "metadata": {"pedido_id": str(order.pk)}})

    resp = deliver(api_client, body)

    assert resp.status_code == 200
    order.refresh_from_db()
    assert order.payment_status == Order.PaymentStatus.FALLIDO


def test_expired_session_found_by_session_id(api_client, gateway, product):
    result = start_checkout(
        items=[{"product_id": product.pk, "quantity": 1}],
        customer={"email": "c@example.com", "name": "C"},
        shipping_address={"line1": "Calle 1", "city": "Cali", "country": "CO"},
        gateway=gateway,
    )
    body = event_body("checkout.session.expired", {"id": result.session.id, "metadata": {}})

    assert deliver(api_client, body).status_code == 200
    assert Order.objects.get(pk=result.order.pk).payment_status == Order.PaymentStatus.FALLIDO


def test_payment_failed_uses_intent_metadata(api_client, gateway, order):
    body = event_body("payment_intent.payment_failed", {"id": "pi_x", "metadata": {"pedido_id": str(order.pk)}})

    assert deliver(api_client, body).status_code == 200
    order.refresh_from_db()
    assert order.payment_status == Order.PaymentStatus.FALLIDO


def test_failed_then_completed_is_paid(api_client, gateway, order, product):
    deliver(api_client, event_body("payment_intent.payment_failed",
                                   {"id": "pi_x", "metadata": {"pedido_id": str(order.pk)}}))
    deliver(api_client, completed(order, event_id="evt_test_2"))

    order.refresh_from_db()
    assert order.payment_status == Order.PaymentStatus.PAGADO
    product.refresh_from_db()
    assert product.stock == 3


def test_failure_after_payment_does_not_downgrade(api_client, gateway, order):
    deliver(api_client, completed(order))
    deliver(api_client, event_body("checkout.session.expired",
                                   {"id": "cs_test_1", "metadata": {"pedido_id": str(order.pk)}}))

    assert Order.objects.get(pk=order.pk).payment_status == Order.PaymentStatus.PAGADO


def test_unknown_order_is_acknowledged(api_client, gateway, caplog):
    body = event_body("checkout.session.completed", {"id": "cs_x", "metadata": {"pedido_id": str(uuid.uuid4())}})

    with caplog.at_level(logging.ERROR, logger="shop.webhooks"):
        resp = deliver(api_client, body)

    assert resp.status_code == 200
    assert "order not found" in caplog.text


def test_unhandled_event_type_is_acknowledged(api_client, gateway):
    resp = deliver(api_client, event_body("customer.created", {"id": "cus_1"}))
    assert resp.status_code == 200


def test_rejected_decrement_keeps_order_unpaid(api_client, gateway, order, product):
    # stock sold elsewhere between checkout and payment
    Product.objects.filter(pk=product.pk).update(stock=1)

    resp = deliver(api_client, completed(order))

    assert resp.status_code == 200
    order.refresh_from_db()
    assert order.payment_status == Order.PaymentStatus.PENDIENTE
    product.refresh_from_db()
    assert product.stock == 1


def test_variant_and_product_stock_both_decremented(api_client, gateway, product):
    variant = Variant.objects.create(product=product, size="M", color="Negro", stock=3, sku="CAM-001-M-NEG")
    order = create_order(
        items=[{"product_id": product.pk, "quantity": 2, "size": "M", "color": "Negro"}],
        customer={"email": "c@example.com", "name": "C"},
        shipping_address={"line1": "Calle 1", "city": "Cali", "country": "CO"},
    )

    deliver(api_client, completed(order))

    variant.refresh_from_db()
    product.refresh_from_db()
    assert variant.stock == 1
    assert product.stock == 3


def test_confirmation_mail_after_commit(api_client, gateway, order, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        deliver(api_client, completed(order))

    assert len(mailoutbox) == 1
    mail = mailoutbox[0]
    assert mail.to == ["cliente@example.com"]
    assert order.number in mail.subject
    assert "$61.980" in mail.body


def test_failing_mail_does_not_break_payment(api_client, gateway, order, monkeypatch,
                                             django_capture_on_commit_callbacks):
    def broken(*args, **kwargs):
        raise ConnectionRefusedError("smtp down")

    monkeypatch.setattr("apps.shop.notifications.send_mail", broken)
    with django_capture_on_commit_callbacks(execute=True):
        resp = deliver(api_client, completed(order))

    assert resp.status_code == 200
    assert Order.objects.get(pk=order.pk).payment_status == Order.PaymentStatus.PAGADO


@pytest.mark.django_db(transaction=True)
def test_concurrent_deliveries_never_oversell(product):
    # five deliveries race for stock 5: four orders of 2 units, one of them delivered twice
    orders = [
        create_order(
            items=[{"product_id": product.pk, "quantity": 2}],
            customer={"email": f"c{i}@example.com", "name": f"Cliente {i}"},
            shipping_address={"line1": "Calle 1", "city": "Cali", "country": "CO"},
        )
        for i in range(4)
    ]
    targets = orders + [orders[0]]
    barrier = threading.Barrier(len(targets))
    pay = retry_on_tx_failure(max_attempts=30, backoff=0.01)(mark_order_paid)
    results, errors = [], []

    def worker(order):
        try:
            barrier.wait()
            results.append(pay(order.pk, payment_ref=f"pi_{order.number}"))
        except OutOfStock:
            results.append(None)
        except Exception as e:
            errors.append(e)
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(o,)) for o in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert results.count(True) == 2
    product.refresh_from_db()
    assert product.stock == 1
    paid = Order.objects.filter(payment_status=Order.PaymentStatus.PAGADO)
    assert paid.count() == 2
    assert Order.objects.filter(payment_status=Order.PaymentStatus.PENDIENTE).count() == 2
