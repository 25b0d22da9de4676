from decimal import Decimal

import pytest

from .filters import build_product_filter, filter_products, paginate
from .models import Category, Product, Variant

pytestmark = pytest.mark.django_db

URL = "/api/productos"


@pytest.fixture
def catalog(make_product):
    items = {
        "sold_out": make_product(name="Chaqueta Cuero", stock=0, price=Decimal("250000")),
        "low": make_product(name="Camiseta Negra", stock=3, price=Decimal("25990")),
        "plenty": make_product(name="Jean Azul", stock=40, price=Decimal("89990"), is_featured=True),
        "hidden": make_product(name="Gorra Vieja", stock=10, price=Decimal("15000"), is_active=False),
    }
    Variant.objects.create(product=items["low"], size="M", color="Negro", stock=3, sku="CN-M-NEG")
    Variant.objects.create(product=items["plenty"], size="32", color="Azul", stock=20, sku="JA-32-AZU")
    Variant.objects.create(product=items["plenty"], size="M", color="Azul", stock=20, sku="JA-M-AZU")
    return items


def names(resp):
    return sorted(p["nombre"] for p in resp.json()["productos"])


def test_public_list_hides_inactive(api_client, catalog):
    resp = api_client.get(URL, {"activo": "false"})

    assert resp.status_code == 200
    assert "Gorra Vieja" not in names(resp)
    assert resp.json()["pagination"] == {"total": 3, "page": 1, "limit": 12, "pages": 1}


def test_search_is_case_insensitive(api_client, catalog):
    assert names(api_client.get(URL, {"search": "JEAN"})) == ["Jean Azul"]


@pytest.mark.parametrize("bucket, expected", [
    ("out", ["Chaqueta Cuero"]),
    ("agotado", ["Chaqueta Cuero"]),
    ("low", ["Camiseta Negra"]),
    ("available", ["Camiseta Negra", "Jean Azul"]),
])
def test_stock_buckets(api_client, catalog, bucket, expected):
    assert names(api_client.get(URL, {"stock": bucket})) == expected


def test_price_range_is_inclusive(api_client, catalog):
    resp = api_client.get(URL, {"precioMin": "25990", "precioMax": "89990"})
    assert names(resp) == ["Camiseta Negra", "Jean Azul"]


def test_price_range_inverted_is_rejected(api_client, catalog):
    resp = api_client.get(URL, {"precioMin": "100", "precioMax": "10"})
    assert resp.status_code == 400


def test_size_and_color_filters(api_client, catalog):
    assert names(api_client.get(URL, {"tallas": "M"})) == ["Camiseta Negra", "Jean Azul"]
    assert names(api_client.get(URL, {"tallas": "M", "colores": "Negro"})) == ["Camiseta Negra"]
    # two matching variants still yield one product
    assert names(api_client.get(URL, {"colores": "Azul"})) == ["Jean Azul"]


def test_size_color_filter_requires_one_variant_with_both(catalog):
    qs = filter_products(Product.objects.all(), sizes=["32"], colors=["Negro"])
    assert list(qs) == []


def test_featured_and_category_filters(api_client, catalog, category):
    other = Category.objects.create(name="Accesorios", slug="accesorios")
    Product.objects.filter(pk=catalog["sold_out"].pk).update(category=other)

    assert names(api_client.get(URL, {"destacado": "true"})) == ["Jean Azul"]
    assert names(api_client.get(URL, {"categoria": "accesorios"})) == ["Chaqueta Cuero"]
    assert len(names(api_client.get(URL, {"categoria": str(category.pk)}))) == 2


def test_empty_filter_matches_everything(catalog):
    assert Product.objects.filter(build_product_filter()).count() == 4


def test_pagination(api_client, make_product):
    for _ in range(5):
        make_product()

    resp = api_client.get(URL, {"page": 3, "limit": 2})

    body = resp.json()
    assert len(body["productos"]) == 1
    assert body["pagination"] == {"total": 5, "page": 3, "limit": 2, "pages": 3}


def test_paginate_past_the_end(make_product):
    make_product()
    items, meta = paginate(Product.objects.all(), page=4, limit=10)
    assert items == []
    assert meta == {"total": 1, "page": 4, "limit": 10, "pages": 1}


def test_limit_is_capped(api_client):
    assert api_client.get(URL, {"limit": 500}).status_code == 400


def test_product_detail_with_related(api_client, catalog):
    low = catalog["low"]

    resp = api_client.get(f"{URL}/{low.slug}")

    assert resp.status_code == 200
    data = resp.json()
    assert data["nombre"] == "Camiseta Negra"
    assert data["estadoStock"] == "bajo"
    assert data["categoria"]["slug"] == "camisetas"
    assert data["variantes"][0]["sku"] == "CN-M-NEG"
    related = {p["nombre"] for p in data["relacionados"]}
    assert related == {"Chaqueta Cuero", "Jean Azul"}


def test_inactive_product_detail_is_404(api_client, catalog):
    resp = api_client.get(f"{URL}/{catalog['hidden'].slug}")
    assert resp.status_code == 404


def test_category_list_counts_products(api_client, catalog):
    Category.objects.create(name="Oculta", slug="oculta", is_active=False)

    data = api_client.get("/api/categorias").json()

    assert [c["slug"] for c in data] == ["camisetas"]
    assert data[0]["totalProductos"] == 4
