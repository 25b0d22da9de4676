import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .errors import (
    CartEmpty,
    InvalidStatusValue,
    OrderNotFound,
    OutOfStock,
    PaymentGatewayError,
    ProductNotFound,
    ValidationError,
)
from .gateway import CheckoutSession, get_gateway
from .models import Order, OrderItem, Product, Variant
from .notifications import dispatch, record_delivery, send_order_confirmation, send_shipping_notification
from .transactions import retry_on_tx_failure
from .utils import generate_order_number

logger = logging.getLogger("shop.checkout")
orders_logger = logging.getLogger("shop.orders")

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    session: CheckoutSession


def compute_shipping(subtotal: Decimal) -> Decimal:
    if subtotal > settings.SHOP_FREE_SHIPPING_THRESHOLD:
        return ZERO
    return Decimal(settings.SHOP_SHIPPING_FLAT_FEE)


def _match_variant(product, size, color):
    if not size and not color:
        return None
    for variant in product.variants.all():
        if variant.size == (size or "") and variant.color == (color or ""):
            return variant
    return None


def _get_order(order_id, *, lock=False) -> Order:
    qs = Order.objects.select_for_update() if lock else Order.objects.all()
    try:
        return qs.get(pk=order_id)
    except (Order.DoesNotExist, DjangoValidationError):
        raise OrderNotFound()


@transaction.atomic
def create_order(*, items: list[dict], customer: dict, shipping_address: dict, user=None) -> Order:
    """items = [{'product_id': UUID, 'quantity': 2, 'size': 'M', 'color': 'Negro'}, ...]

    Prices and stock come from the catalog; nothing the client sent about them is used.
    """
    if not items:
        raise CartEmpty()

    ids = {it["product_id"] for it in items}
    products = {p.pk: p for p in Product.objects.filter(pk__in=ids, is_active=True).prefetch_related("variants")}

    subtotal = ZERO
    wanted_product = defaultdict(int)
    wanted_variant = defaultdict(int)
    bulk_items = []

    for it in items:
        product = products.get(it["product_id"])
        if product is None:
            raise ProductNotFound(f"Producto {it['product_id']} no encontrado")
        q = int(it["quantity"])
        wanted_product[product.pk] += q
        if product.stock < wanted_product[product.pk]:
            raise OutOfStock(f"Stock insuficiente para {product.name}. Disponible: {product.stock}")

        price = product.price
        variant = _match_variant(product, it.get("size"), it.get("color"))
        if variant is not None:
            wanted_variant[variant.pk] += q
            if variant.stock < wanted_variant[variant.pk]:
                raise OutOfStock(f"Stock insuficiente para la variante seleccionada de {product.name}")
            price = variant.unit_price

        bulk_items.append(OrderItem(
            product=product,
            variant=variant,
            name=product.name,
            unit_price=price,
            quantity=q,
            size=it.get("size") or "",
            color=it.get("color") or "",
            subtotal=price * q,
        ))
        subtotal += price * q

    shipping = compute_shipping(subtotal)
    order = Order.objects.create(
        number=generate_order_number(),
        user=user if user is not None and user.is_authenticated else None,
        customer_email=customer["email"],
        customer_name=customer["name"],
        customer_phone=customer.get("phone") or "",
        shipping_address=shipping_address,
        subtotal=subtotal,
        shipping=shipping,
        total=subtotal + shipping,
    )
    for line in bulk_items:
        line.order = order
    OrderItem.objects.bulk_create(bulk_items)
    logger.info("order created: %s subtotal=%s envio=%s total=%s", order.number, subtotal, shipping, order.total)
    return order


def start_checkout(*, items, customer, shipping_address, user=None, gateway=None) -> CheckoutResult:
    gateway = gateway or get_gateway()
    order = create_order(items=items, customer=customer, shipping_address=shipping_address, user=user)
    try:
        session = gateway.create_checkout_session(order)
    except PaymentGatewayError:
        logger.error("order %s left PENDIENTE: payment session could not be created", order.number)
        raise

    Order.objects.filter(pk=order.pk).update(stripe_session_id=session.id)
    order.stripe_session_id = session.id
    logger.info("checkout session %s opened for order %s", session.id, order.number)
    return CheckoutResult(order=order, session=session)


def _decrement_stock(order: Order):
    per_product = defaultdict(int)
    per_variant = defaultdict(int)
    for item in order.items.all():
        if item.variant_id:
            per_variant[item.variant_id] += item.quantity
        per_product[item.product_id] += item.quantity

    # fixed lock order (variants, then products, by pk) across concurrent deliveries
    for pk in sorted(per_variant, key=str):
        q = per_variant[pk]
        if not Variant.objects.filter(pk=pk, stock__gte=q).update(stock=F("stock") - q):
            raise OutOfStock(f"Stock insuficiente para la variante {pk} del pedido {order.number}")
    for pk in sorted(per_product, key=str):
        q = per_product[pk]
        if not Product.objects.filter(pk=pk, stock__gte=q).update(stock=F("stock") - q):
            raise OutOfStock(f"Stock insuficiente para el producto {pk} del pedido {order.number}")


PAYABLE = (Order.PaymentStatus.PENDIENTE, Order.PaymentStatus.FALLIDO)


def _apply_payment(order: Order, payment_ref=None):
    """The not-paid -> PAGADO edge. Caller holds the order row lock and saves the order."""
    _decrement_stock(order)
    order.payment_status = Order.PaymentStatus.PAGADO
    if payment_ref:
        order.stripe_payment_id = payment_ref
    dispatch(send_order_confirmation, order.pk)


@retry_on_tx_failure(max_attempts=3, backoff=0.1)
@transaction.atomic
def mark_order_paid(order_id, *, payment_ref=None) -> bool:
    """Apply the not-paid -> PAGADO edge once; returns False for a repeated delivery."""
    order = _get_order(order_id, lock=True)
    if order.payment_status == Order.PaymentStatus.PAGADO:
        logger.info("order %s already paid; stock left untouched", order.number)
        return False
    if order.payment_status not in PAYABLE:
        logger.warning("order %s is %s; ignoring payment completion", order.number, order.payment_status)
        return False

    _apply_payment(order, payment_ref)
    order.save(update_fields=["payment_status", "stripe_payment_id", "updated_at"])
    logger.info("order %s paid (payment=%s); stock updated", order.number, payment_ref)
    return True


def mark_payment_failed(order_id) -> bool:
    order = _get_order(order_id)
    updated = Order.objects.filter(pk=order.pk, payment_status=Order.PaymentStatus.PENDIENTE).update(
        payment_status=Order.PaymentStatus.FALLIDO, updated_at=timezone.now()
    )
    if updated:
        logger.info("order %s payment failed", order.number)
    return bool(updated)


def find_order_for_payment(*, payment_ref=None, session_id=None, order_id=None) -> Order:
    lookups = [("stripe_payment_id", payment_ref), ("stripe_session_id", session_id)]
    for field, value in lookups:
        if value:
            order = Order.objects.filter(**{field: value}).first()
            if order is not None:
                return order
    if order_id:
        return _get_order(order_id)
    raise OrderNotFound()


ORDER_UPDATE_FIELDS = {"status", "payment_status", "tracking_number", "notes", "shipped_at"}


@transaction.atomic
def update_order(order_id, **changes) -> Order:
    unknown = set(changes) - ORDER_UPDATE_FIELDS
    if unknown:
        raise ValidationError(f"Campos no permitidos: {', '.join(sorted(unknown))}")
    status = changes.get("status")
    if status is not None and status not in Order.Status.values:
        raise InvalidStatusValue(f"Estado de pedido inválido: {status}")
    payment_status = changes.get("payment_status")
    if payment_status is not None and payment_status not in Order.PaymentStatus.values:
        raise InvalidStatusValue(f"Estado de pago inválido: {payment_status}")

    order = _get_order(order_id, lock=True)
    previous = order.status
    # a manual PAGADO takes the same stock-decrementing edge as the webhook
    if payment_status == Order.PaymentStatus.PAGADO and order.payment_status in PAYABLE:
        _apply_payment(order)
    for field, value in changes.items():
        setattr(order, field, value)

    entered = status if status is not None and status != previous else None
    if entered == Order.Status.ENVIADO and order.shipped_at is None:
        order.shipped_at = timezone.now()
    order.save()

    if entered == Order.Status.ENVIADO:
        dispatch(send_shipping_notification, order.pk)
    elif entered == Order.Status.ENTREGADO:
        dispatch(record_delivery, order.pk)
    orders_logger.info("order %s updated: %s", order.number, ", ".join(f"{k}={v}" for k, v in changes.items()))
    return order
