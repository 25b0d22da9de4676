import logging
from decimal import Decimal

import pytest
from django.core.management import call_command
from rest_framework.test import APIClient

from .models import Category, Order, Product, Usuario, Variant
from .services import create_order, mark_order_paid, update_order

pytestmark = pytest.mark.django_db


@pytest.fixture
def order(product):
    return create_order(
        items=[{"product_id": product.pk, "quantity": 1}],
        customer={"email": "cliente@example.com", "name": "Ana Pérez"},
        shipping_address={"line1": "Calle 1", "city": "Bogotá", "country": "CO"},
    )


def product_body(category, **kw):
    body = {
        "nombre": "Jean Slim",
        "descripcionCorta": "Jean azul de corte slim",
        "precio": "89990",
        "precioOriginal": "119990",
        "categoriaId": str(category.pk),
        "sku": "JEAN-001",
        "stock": 12,
    }
    body.update(kw)
    return body


# ---- access ----

@pytest.mark.parametrize("url", ["/api/admin/productos", "/api/admin/pedidos", "/api/admin/estadisticas"])
def test_admin_requires_session(api_client, url):
    resp = api_client.get(url)
    assert resp.status_code == 401
    assert resp.json() == {"error": "No autorizado"}


def test_admin_rejects_customer_role(api_client):
    user = Usuario.objects.create_user("cliente", email="cliente@example.com", password="pw")
    api_client.force_login(user)
    assert api_client.get("/api/admin/pedidos").status_code == 401


def test_login_me_logout(api_client, admin_user):
    resp = api_client.post("/api/auth/login", {"email": "admin@tienda.com", "password": "pw"}, format="json")
    assert resp.status_code == 200
    assert resp.json()["role"] == "ADMIN"

    assert api_client.get("/api/auth/me").json()["email"] == "admin@tienda.com"
    assert api_client.post("/api/auth/logout").status_code == 204
    assert api_client.get("/api/admin/pedidos").status_code == 401


def test_login_bad_password(api_client, admin_user):
    resp = api_client.post("/api/auth/login", {"email": "admin@tienda.com", "password": "nope"}, format="json")
    assert resp.status_code == 401


def test_seed_admin_command():
    call_command("seed_admin", email="jefe@tienda.com", password="secreto")
    call_command("seed_admin", email="jefe@tienda.com", password="otro")

    user = Usuario.objects.get(email="jefe@tienda.com")
    assert user.is_shop_admin
    assert user.check_password("secreto")


# ---- products ----

def test_create_product_with_variants(admin_client, category):
    body = product_body(category, variantes=[
        {"talla": "30", "color": "Azul", "stock": 4, "sku": "JEAN-001-30"},
        {"talla": "32", "color": "Azul", "stock": 8, "sku": "JEAN-001-32", "precio": "94990"},
    ])

    resp = admin_client.post("/api/admin/productos", body, format="json")

    assert resp.status_code == 201
    data = resp.json()
    assert data["slug"].startswith("jean-slim-")
    assert data["descuento"] == 25
    assert data["imagenes"]  # default image
    assert {v["talla"]: v["precio"] for v in data["variantes"]} == {"30": 89990, "32": 94990}


def test_create_product_duplicate_sku(admin_client, category, product):
    resp = admin_client.post("/api/admin/productos", product_body(category, sku=product.sku), format="json")

    assert resp.status_code == 400
    assert resp.json()["error"] == "El SKU ya está en uso"
    assert Product.objects.count() == 1


def test_create_product_validation(admin_client, category):
    resp = admin_client.post("/api/admin/productos", product_body(category, precio="-1", nombre="J"), format="json")

    assert resp.status_code == 400
    assert set(resp.json()["details"]) == {"precio", "nombre"}


def test_update_and_patch_product(admin_client, product):
    url = f"/api/admin/productos/{product.pk}"

    resp = admin_client.put(url, {"precio": "19990", "nombre": "Camiseta Oferta"}, format="json")
    assert resp.status_code == 200
    assert resp.json()["precio"] == 19990
    assert resp.json()["totalPedidos"] == 0

    resp = admin_client.patch(url, {"activo": False, "stock": 0}, format="json")
    assert resp.status_code == 200
    product.refresh_from_db()
    assert product.is_active is False
    assert product.stock_status == "agotado"


def test_delete_product_with_orders_conflicts(admin_client, product, order):
    resp = admin_client.delete(f"/api/admin/productos/{product.pk}")

    assert resp.status_code == 400
    assert Product.objects.filter(pk=product.pk).exists()


def test_delete_product(admin_client, product):
    assert admin_client.delete(f"/api/admin/productos/{product.pk}").status_code == 200
    assert not Product.objects.exists()


def test_admin_product_list_sees_inactive(admin_client, make_product):
    make_product(is_active=False)
    make_product()

    data = admin_client.get("/api/admin/productos").json()

    assert data["pagination"]["total"] == 2
    assert data["pagination"]["limit"] == 20


def test_admin_product_not_found(admin_client):
    resp = admin_client.get("/api/admin/productos/00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Producto no encontrado"


def test_put_replaces_variants(admin_client, product):
    kept = Variant.objects.create(product=product, size="M", color="Negro", stock=2, sku="CAM-001-M-NEG")
    Variant.objects.create(product=product, size="L", color="Negro", stock=2, sku="CAM-001-L-NEG")

    resp = admin_client.put(f"/api/admin/productos/{product.pk}", {"variantes": [
        {"talla": "M", "color": "Negro", "stock": 7, "sku": "CAM-001-M-NEG"},
        {"talla": "S", "color": "Blanco", "stock": 3, "sku": "CAM-001-S-BLA", "precio": "27990"},
    ]}, format="json")

    assert resp.status_code == 200
    variants = {(v["talla"], v["color"]): v for v in resp.json()["variantes"]}
    assert set(variants) == {("M", "Negro"), ("S", "Blanco")}
    assert variants[("M", "Negro")]["id"] == str(kept.pk)
    assert variants[("M", "Negro")]["stock"] == 7
    assert variants[("S", "Blanco")]["precio"] == 27990


def test_put_without_variants_keeps_them(admin_client, product):
    Variant.objects.create(product=product, size="M", color="Negro", stock=2, sku="CAM-001-M-NEG")

    resp = admin_client.put(f"/api/admin/productos/{product.pk}", {"stock": 9}, format="json")

    assert resp.status_code == 200
    assert len(resp.json()["variantes"]) == 1


def test_put_incomplete_variant_rejected(admin_client, product):
    resp = admin_client.put(f"/api/admin/productos/{product.pk}",
                            {"variantes": [{"talla": "M", "color": "Negro"}]}, format="json")

    assert resp.status_code == 400
    assert "variantes" in resp.json()["details"]
    assert not product.variants.exists()


def test_put_variant_sku_of_other_product_rejected(admin_client, product, make_product):
    other = make_product()
    Variant.objects.create(product=other, size="M", color="Negro", stock=1, sku="TAKEN-1")

    resp = admin_client.put(f"/api/admin/productos/{product.pk}", {"variantes": [
        {"talla": "M", "color": "Negro", "stock": 1, "sku": "TAKEN-1"},
    ]}, format="json")

    assert resp.status_code == 400
    assert not product.variants.exists()


# ---- categories ----

def test_create_category_generates_slug(admin_client):
    resp = admin_client.post("/api/admin/categorias", {"nombre": "Vestidos de Fiesta"}, format="json")

    assert resp.status_code == 201
    assert resp.json()["slug"] == "vestidos-de-fiesta"


def test_create_category_duplicate_name(admin_client, category):
    resp = admin_client.post("/api/admin/categorias", {"nombre": category.name}, format="json")
    assert resp.status_code == 400


def test_create_category_with_explicit_slug(admin_client):
    resp = admin_client.post("/api/admin/categorias", {"nombre": "Ropa Deportiva", "slug": "deporte"},
                             format="json")

    assert resp.status_code == 201
    assert resp.json()["slug"] == "deporte"


def test_create_category_taken_slug(admin_client, category):
    resp = admin_client.post("/api/admin/categorias", {"nombre": "Otra", "slug": category.slug}, format="json")

    assert resp.status_code == 400
    assert resp.json()["error"] == "El slug ya está en uso"
    assert Category.objects.count() == 1


def test_rename_category_regenerates_slug(admin_client, category):
    resp = admin_client.put(f"/api/admin/categorias/{category.pk}", {"nombre": "Camisas"}, format="json")

    assert resp.status_code == 200
    assert resp.json()["slug"] == "camisas"


def test_delete_category_with_products_conflicts(admin_client, category, product):
    resp = admin_client.delete(f"/api/admin/categorias/{category.pk}")

    assert resp.status_code == 400
    assert resp.json()["error"] == "No se puede eliminar la categoría porque tiene productos asociados"
    assert Category.objects.filter(pk=category.pk).exists()


def test_category_detail_lists_products(admin_client, category, product):
    data = admin_client.get(f"/api/admin/categorias/{category.pk}").json()

    assert data["totalProductos"] == 1
    assert data["productos"][0]["sku"] == product.sku


def test_delete_empty_category(admin_client):
    empty = Category.objects.create(name="Vacía", slug="vacia")
    assert admin_client.delete(f"/api/admin/categorias/{empty.pk}").status_code == 200
    assert not Category.objects.filter(pk=empty.pk).exists()


# ---- orders ----

def test_ship_order_sends_notification(admin_client, order, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        resp = admin_client.put(
            f"/api/admin/pedidos/{order.pk}",
            {"estadoPedido": "ENVIADO", "trackingNumber": "TRK-123"},
            format="json",
        )

    assert resp.status_code == 200
    data = resp.json()
    assert data["estadoPedido"] == "ENVIADO"
    assert data["fechaEnvio"] is not None
    assert len(mailoutbox) == 1
    assert "TRK-123" in mailoutbox[0].body


def test_repeated_ship_update_notifies_once(order, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        update_order(order.pk, status=Order.Status.ENVIADO)
        update_order(order.pk, status=Order.Status.ENVIADO, notes="reenvío")

    assert len(mailoutbox) == 1


def test_deliver_order_records_metric(order, caplog, django_capture_on_commit_callbacks):
    with caplog.at_level(logging.INFO, logger="shop.metrics"):
        with django_capture_on_commit_callbacks(execute=True):
            update_order(order.pk, status=Order.Status.ENTREGADO)

    assert f"order delivered: order={order.number}" in caplog.text


def test_invalid_status_rejected(admin_client, order):
    resp = admin_client.put(f"/api/admin/pedidos/{order.pk}", {"estadoPedido": "PERDIDO"}, format="json")

    assert resp.status_code == 400
    order.refresh_from_db()
    assert order.status == Order.Status.PENDIENTE


def test_manual_payment_decrements_stock_once(admin_client, order, product):
    resp = admin_client.put(f"/api/admin/pedidos/{order.pk}", {"estadoPago": "PAGADO"}, format="json")

    assert resp.status_code == 200
    assert resp.json()["estadoPago"] == "PAGADO"
    product.refresh_from_db()
    assert product.stock == 4

    # the gateway's completion arriving afterwards is a repeat
    assert mark_order_paid(order.pk, payment_ref="pi_late") is False
    product.refresh_from_db()
    assert product.stock == 4


def test_manual_payment_without_stock_is_rejected(admin_client, order, product):
    Product.objects.filter(pk=product.pk).update(stock=0)

    resp = admin_client.put(f"/api/admin/pedidos/{order.pk}",
                            {"estadoPago": "PAGADO", "estadoPedido": "PROCESANDO"}, format="json")

    assert resp.status_code == 400
    order.refresh_from_db()
    assert order.payment_status == Order.PaymentStatus.PENDIENTE
    assert order.status == Order.Status.PENDIENTE


def test_manual_payment_on_paid_order_leaves_stock(order, product):
    mark_order_paid(order.pk, payment_ref="pi_1")
    update_order(order.pk, payment_status=Order.PaymentStatus.PAGADO, notes="confirmado")

    product.refresh_from_db()
    assert product.stock == 4


def test_manual_payment_sends_confirmation(order, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        update_order(order.pk, payment_status=Order.PaymentStatus.PAGADO)

    assert len(mailoutbox) == 1
    assert order.number in mailoutbox[0].subject


def test_update_unknown_order(admin_client):
    resp = admin_client.put("/api/admin/pedidos/00000000-0000-0000-0000-000000000000",
                            {"notas": "x"}, format="json")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Pedido no encontrado"


def test_order_list_filters_and_stats(admin_client, order, product):
    other = create_order(
        items=[{"product_id": product.pk, "quantity": 2}],
        customer={"email": "otro@example.com", "name": "Luis Gómez"},
        shipping_address={"line1": "Calle 2", "city": "Cali", "country": "CO"},
    )
    update_order(other.pk, status=Order.Status.PROCESANDO)

    data = admin_client.get("/api/admin/pedidos").json()
    assert data["pagination"]["total"] == 2
    assert data["stats"]["totalPedidos"] == 2
    assert data["stats"]["totalVentas"] == float(order.total + other.total)

    data = admin_client.get("/api/admin/pedidos", {"estado": "PROCESANDO"}).json()
    assert [o["id"] for o in data["pedidos"]] == [str(other.pk)]

    data = admin_client.get("/api/admin/pedidos", {"search": "luis"}).json()
    assert data["pagination"]["total"] == 1


# ---- statistics ----

def test_statistics_count_only_delivered_paid_orders(admin_client, order, product, make_product):
    mark_order_paid(order.pk, payment_ref="pi_1")
    update_order(order.pk, status=Order.Status.ENTREGADO)
    create_order(
        items=[{"product_id": product.pk, "quantity": 1}],
        customer={"email": "otro@example.com", "name": "Luis"},
        shipping_address={"line1": "Calle 2", "city": "Cali", "country": "CO"},
    )
    make_product(stock=3)

    data = admin_client.get("/api/admin/estadisticas", {"periodo": "año"}).json()

    assert data["totalVentas"] == float(order.total)
    assert data["totalPedidos"] == 2
    assert data["pedidosPendientes"] == 1
    assert data["totalProductos"] == 2
    assert data["productosBajoStock"] == 2
    (top,) = data["productosMasVendidos"]
    assert top["id"] == str(product.pk)
    assert top["unidadesVendidas"] == 1
    assert data["mejoresClientes"][0]["email"] == "cliente@example.com"
    assert data["categoriasMasVendidas"][0]["nombre"] == "Camisetas"
    assert len(data["ventasMensuales"]) == 1
    assert data["periodo"]["actual"] == "año"


def test_statistics_unknown_period_defaults_to_month(admin_client):
    data = admin_client.get("/api/admin/estadisticas", {"periodo": "siglo"}).json()
    assert data["periodo"]["actual"] == "mes"
    assert data["totalVentas"] == 0


def test_variant_sku_collision(admin_client, category, product):
    Variant.objects.create(product=product, size="M", color="Negro", stock=1, sku="TAKEN-1")
    body = product_body(category, variantes=[{"talla": "M", "color": "Negro", "stock": 1, "sku": "TAKEN-1"}])

    resp = admin_client.post("/api/admin/productos", body, format="json")

    assert resp.status_code == 400
    assert Product.objects.count() == 1


def test_health(api_client, category):
    resp = api_client.get("/api/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["services"]["database"] == "connected"
    assert data["metrics"]["categories"] == 1
    assert "no-cache" in resp["Cache-Control"]


def test_money_fields_are_numbers(admin_client, order):
    data = admin_client.get(f"/api/admin/pedidos/{order.pk}").json()
    assert data["subtotal"] == 25990
    assert data["envio"] == 10000
    assert Decimal(str(data["total"])) == order.total
