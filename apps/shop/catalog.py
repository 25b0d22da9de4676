import logging

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from .errors import CategoryNotFound, ConflictError, DuplicateSku, ProductNotFound
from .models import Category, Product, Variant
from .utils import product_slug, unique_slug

logger = logging.getLogger("shop")


def get_product(product_id, *, lock=False) -> Product:
    qs = Product.objects.select_for_update() if lock else Product.objects.all()
    try:
        return qs.get(pk=product_id)
    except (Product.DoesNotExist, DjangoValidationError):
        raise ProductNotFound()


def get_category(category_id, *, lock=False) -> Category:
    qs = Category.objects.select_for_update() if lock else Category.objects.all()
    try:
        return qs.get(pk=category_id)
    except (Category.DoesNotExist, DjangoValidationError):
        raise CategoryNotFound()


def _check_variant_skus(variants, exclude_product=None):
    skus = [v["sku"] for v in variants]
    qs = Variant.objects.filter(sku__in=skus)
    if exclude_product is not None:
        qs = qs.exclude(product=exclude_product)
    taken = list(qs.values_list("sku", flat=True))
    if taken:
        raise DuplicateSku(f"SKU de variante en uso: {', '.join(taken)}")


@transaction.atomic
def create_product(*, variants=(), **data) -> Product:
    if Product.objects.filter(sku=data["sku"]).exists():
        raise DuplicateSku()
    _check_variant_skus(variants)
    if not data.get("images"):
        data["images"] = [settings.SHOP_DEFAULT_PRODUCT_IMAGE]

    product = Product.objects.create(slug=unique_slug(Product, product_slug(data["name"])), **data)
    Variant.objects.bulk_create([Variant(product=product, **v) for v in variants])
    logger.info("product created: %s sku=%s", product.slug, product.sku)
    return product


def _replace_variants(product, variants):
    """Variants matched by (size, color) are updated, new ones created, missing ones deleted."""
    _check_variant_skus(variants, exclude_product=product)
    wanted = {(v["size"], v["color"]) for v in variants}
    existing = {}
    for variant in product.variants.all():
        if (variant.size, variant.color) in wanted:
            existing[(variant.size, variant.color)] = variant
        else:
            variant.delete()
    for data in variants:
        variant = existing.get((data["size"], data["color"])) or Variant(product=product)
        for field, value in data.items():
            setattr(variant, field, value)
        variant.save()


@transaction.atomic
def update_product(product_id, *, variants=None, **data) -> Product:
    product = get_product(product_id, lock=True)
    sku = data.get("sku")
    if sku and sku != product.sku and Product.objects.filter(sku=sku).exists():
        raise DuplicateSku()
    for field, value in data.items():
        setattr(product, field, value)
    product.save()
    if variants is not None:
        _replace_variants(product, variants)
    return product


@transaction.atomic
def delete_product(product_id):
    product = get_product(product_id, lock=True)
    if product.order_items.exists():
        raise ConflictError("No se puede eliminar el producto porque tiene pedidos asociados")
    product.delete()
    logger.info("product deleted: %s", product.slug)


@transaction.atomic
def create_category(**data) -> Category:
    if Category.objects.filter(name=data["name"]).exists():
        raise ConflictError("Ya existe una categoría con ese nombre")
    slug = data.pop("slug", None)
    if slug and Category.objects.filter(slug=slug).exists():
        raise ConflictError("El slug ya está en uso")
    category = Category.objects.create(slug=slug or unique_slug(Category, data["name"]), **data)
    logger.info("category created: %s", category.slug)
    return category


@transaction.atomic
def update_category(category_id, **data) -> Category:
    category = get_category(category_id, lock=True)
    name = data.get("name")
    if name and name != category.name:
        if Category.objects.filter(name=name).exclude(pk=category.pk).exists():
            raise ConflictError("Ya existe una categoría con ese nombre")
        data["slug"] = unique_slug(Category, name, exclude_pk=category.pk)
    elif data.get("slug") and Category.objects.filter(slug=data["slug"]).exclude(pk=category.pk).exists():
        raise ConflictError("El slug ya está en uso")
    for field, value in data.items():
        setattr(category, field, value)
    category.save()
    return category


@transaction.atomic
def delete_category(category_id):
    category = get_category(category_id, lock=True)
    if category.products.exists():
        raise ConflictError("No se puede eliminar la categoría porque tiene productos asociados")
    category.delete()
    logger.info("category deleted: %s", category.slug)
