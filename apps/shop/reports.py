"""Admin statistics built from ORM aggregations.

A sale is an order that was both paid and delivered.
"""
import calendar
from datetime import datetime, time, timedelta

from django.conf import settings
from django.db.models import Count, Max, Sum
from django.db.models.functions import TruncMonth
from django.utils import timezone

from .models import Order, OrderItem, Product

PERIODS = ("dia", "semana", "mes", "año")


def _sales():
    return Order.objects.filter(status=Order.Status.ENTREGADO, payment_status=Order.PaymentStatus.PAGADO)


def _months_ago(moment, months):
    year, month = divmod(moment.year * 12 + moment.month - 1 - months, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_start(period, now=None):
    now = now or timezone.now()
    midnight = timezone.make_aware(datetime.combine(timezone.localdate(now), time.min))
    if period == "dia":
        return midnight
    if period == "semana":
        return midnight - timedelta(days=7)
    if period == "año":
        return _months_ago(midnight, 12)
    return _months_ago(midnight, 1)


def compute_monthly_sales(since=None, months=12):
    since = since or _months_ago(timezone.now(), months)
    rows = (
        _sales().filter(created_at__gte=since)
        .annotate(month=TruncMonth("created_at"))
        .values("month")
        .annotate(orders=Count("id"), revenue=Sum("total"))
        .order_by("-month")[:months]
    )
    return [
        {"mes": row["month"].strftime("%Y-%m"), "cantidad": row["orders"], "total": row["revenue"] or 0}
        for row in rows
    ]


def _sold_items():
    return OrderItem.objects.filter(
        order__status=Order.Status.ENTREGADO, order__payment_status=Order.PaymentStatus.PAGADO
    )


def compute_top_products(limit=10):
    rows = (
        _sold_items()
        .values("product_id", "product__name", "product__category_id")
        .annotate(lines=Count("id"), units=Sum("quantity"), revenue=Sum("subtotal"))
        .order_by("-units")[:limit]
    )
    return [
        {
            "id": row["product_id"],
            "nombre": row["product__name"],
            "categoriaId": row["product__category_id"],
            "totalVendido": row["lines"],
            "unidadesVendidas": row["units"],
            "ingresos": row["revenue"],
        }
        for row in rows
    ]


def compute_top_categories(limit=5):
    rows = (
        _sold_items()
        .values("product__category_id", "product__category__name")
        .annotate(orders=Count("order", distinct=True), revenue=Sum("subtotal"), units=Sum("quantity"))
        .order_by("-revenue")[:limit]
    )
    return [
        {
            "id": row["product__category_id"],
            "nombre": row["product__category__name"],
            "pedidos": row["orders"],
            "ingresos": row["revenue"],
            "unidades": row["units"],
        }
        for row in rows
    ]


def compute_top_customers(limit=10):
    rows = (
        _sales()
        .values("customer_email")
        .annotate(name=Max("customer_name"), orders=Count("id"), spent=Sum("total"))
        .order_by("-spent")[:limit]
    )
    return [
        {
            "email": row["customer_email"],
            "nombre": row["name"],
            "totalPedidos": row["orders"],
            "totalGastado": row["spent"],
        }
        for row in rows
    ]


def dashboard(period="mes"):
    if period not in PERIODS:
        period = "mes"
    start = period_start(period)
    return {
        "totalVentas": _sales().filter(created_at__gte=start).aggregate(total=Sum("total"))["total"] or 0,
        "ventasMensuales": compute_monthly_sales(),
        "productosMasVendidos": compute_top_products(),
        "totalPedidos": Order.objects.filter(created_at__gte=start).count(),
        "pedidosPendientes": Order.objects.filter(status=Order.Status.PENDIENTE).count(),
        "totalProductos": Product.objects.filter(is_active=True).count(),
        "productosBajoStock": Product.objects.filter(
            is_active=True, stock__lt=settings.SHOP_LOW_STOCK_LIMIT
        ).count(),
        "categoriasMasVendidas": compute_top_categories(),
        "mejoresClientes": compute_top_customers(),
        "periodo": {
            "actual": period,
            "fechaInicio": start.isoformat(),
            "fechaFin": timezone.now().isoformat(),
        },
    }
