import logging

from django.contrib.auth import authenticate, login, logout
from django.db import connection
from django.db.models import Avg, Count, Prefetch, Sum
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from . import catalog, reports
from .errors import AuthorizationError, OrderNotFound, ProductNotFound
from .filters import build_order_filter, filter_products, paginate
from .gateway import get_gateway
from .models import Category, Order, OrderItem, Product
from .permissions import IsShopAdmin
from .serializers import (
    CategoryIn,
    CategoryOut,
    CheckoutIn,
    LoginIn,
    OrderOut,
    OrderQueryIn,
    OrderUpdateIn,
    ProductIn,
    ProductOut,
    ProductPatchIn,
    ProductQueryIn,
)
from .services import start_checkout, update_order
from .webhooks import handle_event

logger = logging.getLogger("shop")

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def _products():
    return Product.objects.select_related("category").prefetch_related("variants")


def _orders():
    return Order.objects.prefetch_related(Prefetch("items", queryset=OrderItem.objects.order_by("name")))


def _product_page(request, *, default_limit, public):
    ser = ProductQueryIn(data=request.query_params.dict())
    ser.is_valid(raise_exception=True)
    params = dict(ser.validated_data)
    page, limit = params.pop("page"), params.pop("limit", default_limit)
    if public:
        params["active"] = True
    items, pagination = paginate(filter_products(_products(), **params), page, limit)
    return {"productos": ProductOut(items, many=True).data, "pagination": pagination}


# ---- health ----

@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def health(request):
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        categories = Category.objects.count()
    except Exception as e:
        logger.exception("health check failed")
        return Response({
            "status": "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": {"database": "disconnected", "api": "degraded"},
            "error": str(e),
        }, status=status.HTTP_503_SERVICE_UNAVAILABLE, headers=NO_CACHE)
    return Response({
        "status": "healthy",
        "timestamp": timezone.now().isoformat(),
        "services": {"database": "connected", "api": "operational"},
        "metrics": {"categories": categories},
    }, headers=NO_CACHE)


# ---- storefront ----

@api_view(["GET"])
@permission_classes([AllowAny])
def product_list(request):
    return Response(_product_page(request, default_limit=12, public=True))


@api_view(["GET"])
@permission_classes([AllowAny])
def product_detail(request, slug):
    product = _products().filter(slug=slug, is_active=True).first()
    if product is None:
        raise ProductNotFound()
    related = _products().filter(category_id=product.category_id, is_active=True).exclude(pk=product.pk)[:4]
    data = ProductOut(product).data
    data["relacionados"] = ProductOut(related, many=True).data
    return Response(data)


@api_view(["GET"])
@permission_classes([AllowAny])
def category_list(request):
    categories = Category.objects.filter(is_active=True).annotate(product_count=Count("products"))
    return Response(CategoryOut(categories, many=True).data)


@api_view(["POST"])
@permission_classes([AllowAny])
def create_checkout_session(request):
    ser = CheckoutIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    result = start_checkout(
        items=data["items"],
        customer=dict(data["customer"]),
        shipping_address=dict(data["shipping_address"]),
        user=request.user,
        gateway=get_gateway(),
    )
    order = result.order
    payload = {
        "sessionId": result.session.id,
        "orderId": str(order.pk),
        "orderNumber": order.number,
        "redirectUrl": result.session.url,
        "subtotal": order.subtotal,
        "envio": order.shipping,
        "total": order.total,
        "estadoPago": order.payment_status,
    }
    return Response(payload, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def stripe_webhook(request):
    # raw bytes: the signature covers the exact body
    payload = request.body
    event = get_gateway().parse_webhook(payload, request.headers.get("Stripe-Signature", ""))
    handle_event(event)
    return Response({"received": True})


# ---- auth ----

@api_view(["POST"])
@permission_classes([AllowAny])
def auth_login(request):
    ser = LoginIn(data=request.data)
    ser.is_valid(raise_exception=True)
    user = authenticate(request, email=ser.validated_data["email"], password=ser.validated_data["password"])
    if user is None:
        raise AuthorizationError("Credenciales inválidas")
    login(request, user)
    return Response({"id": str(user.pk), "email": user.email, "nombre": user.name, "role": user.role})


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def auth_logout(request):
    logout(request)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def auth_me(request):
    user = request.user
    return Response({"id": str(user.pk), "email": user.email, "nombre": user.name, "role": user.role})


# ---- admin: products ----

@api_view(["GET", "POST"])
@permission_classes([IsShopAdmin])
def admin_products(request):
    if request.method == "GET":
        return Response(_product_page(request, default_limit=20, public=False))

    ser = ProductIn(data=request.data)
    ser.is_valid(raise_exception=True)
    product = catalog.create_product(**ser.validated_data)
    return Response(ProductOut(_products().get(pk=product.pk)).data, status=status.HTTP_201_CREATED)


@api_view(["GET", "PUT", "PATCH", "DELETE"])
@permission_classes([IsShopAdmin])
def admin_product_detail(request, pk):
    if request.method == "GET":
        product = catalog.get_product(pk)
    elif request.method == "PUT":
        ser = ProductIn(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        product = catalog.update_product(pk, **ser.validated_data)
    elif request.method == "PATCH":
        ser = ProductPatchIn(data=request.data)
        ser.is_valid(raise_exception=True)
        product = catalog.update_product(pk, **ser.validated_data)
    else:
        catalog.delete_product(pk)
        return Response({"message": "Producto eliminado exitosamente"})

    product = _products().annotate(order_count=Count("order_items")).get(pk=product.pk)
    data = ProductOut(product).data
    data["totalPedidos"] = product.order_count
    return Response(data)


# ---- admin: categories ----

@api_view(["GET", "POST"])
@permission_classes([IsShopAdmin])
def admin_categories(request):
    if request.method == "GET":
        categories = Category.objects.annotate(product_count=Count("products"))
        return Response(CategoryOut(categories, many=True).data)

    ser = CategoryIn(data=request.data)
    ser.is_valid(raise_exception=True)
    category = catalog.create_category(**ser.validated_data)
    return Response(CategoryOut(category).data, status=status.HTTP_201_CREATED)


@api_view(["GET", "PUT", "DELETE"])
@permission_classes([IsShopAdmin])
def admin_category_detail(request, pk):
    if request.method == "DELETE":
        catalog.delete_category(pk)
        return Response({"message": "Categoría eliminada exitosamente"})

    if request.method == "PUT":
        ser = CategoryIn(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        catalog.update_category(pk, **ser.validated_data)

    category = catalog.get_category(pk)
    category.product_count = category.products.count()
    data = CategoryOut(category).data
    data["productos"] = [
        {"id": str(p.pk), "nombre": p.name, "sku": p.sku, "precio": p.price, "stock": p.stock, "activo": p.is_active}
        for p in category.products.order_by("-created_at")[:10]
    ]
    return Response(data)


# ---- admin: orders ----

@api_view(["GET"])
@permission_classes([IsShopAdmin])
def admin_orders(request):
    ser = OrderQueryIn(data=request.query_params.dict())
    ser.is_valid(raise_exception=True)
    params = dict(ser.validated_data)
    page, limit = params.pop("page"), params.pop("limit")

    qs = _orders().filter(build_order_filter(**params))
    orders, pagination = paginate(qs.order_by("-created_at"), page, limit)
    stats = qs.aggregate(total_sales=Sum("total"), average=Avg("total"), count=Count("id"))
    return Response({
        "pedidos": OrderOut(orders, many=True).data,
        "pagination": pagination,
        "stats": {
            "totalVentas": stats["total_sales"] or 0,
            "promedioPedido": stats["average"] or 0,
            "totalPedidos": stats["count"],
        },
    })


@api_view(["GET", "PUT"])
@permission_classes([IsShopAdmin])
def admin_order_detail(request, pk):
    if request.method == "PUT":
        ser = OrderUpdateIn(data=request.data)
        ser.is_valid(raise_exception=True)
        update_order(pk, **ser.validated_data)

    order = _orders().filter(pk=pk).first()
    if order is None:
        raise OrderNotFound()
    return Response(OrderOut(order).data)


@api_view(["GET"])
@permission_classes([IsShopAdmin])
def admin_statistics(request):
    return Response(reports.dashboard(request.query_params.get("periodo", "mes")))
