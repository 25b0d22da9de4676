import math
import uuid

from django.conf import settings
from django.db.models import Q

from .errors import ValidationError


def _stock_buckets():
    low = settings.SHOP_LOW_STOCK_LIMIT
    out = Q(stock=0)
    low_q = Q(stock__gt=0, stock__lt=low)
    available = Q(stock__gt=0)
    return {
        "out": out, "agotado": out,
        "low": low_q, "bajo": low_q,
        "available": available, "disponible": available,
    }


def _category_q(category):
    try:
        return Q(category_id=uuid.UUID(str(category)))
    except ValueError:
        return Q(category__slug=category)


def build_product_filter(*, search=None, category=None, min_price=None, max_price=None, stock=None,
                         active=None, featured=None, sizes=None, colors=None) -> Q:
    q = Q()
    if search:
        q &= Q(name__icontains=search) | Q(sku__icontains=search) | Q(short_description__icontains=search)
    if category:
        q &= _category_q(category)
    if min_price is not None:
        q &= Q(price__gte=min_price)
    if max_price is not None:
        q &= Q(price__lte=max_price)
    if stock:
        bucket = _stock_buckets().get(stock)
        if bucket is None:
            raise ValidationError(f"Filtro de stock inválido: {stock}")
        q &= bucket
    if active is not None:
        q &= Q(is_active=active)
    if featured is not None:
        q &= Q(is_featured=featured)
    # one variant has to satisfy both sets
    if sizes:
        q &= Q(variants__size__in=sizes)
    if colors:
        q &= Q(variants__color__in=colors)
    return q


def filter_products(qs, **params):
    q = build_product_filter(**params)
    qs = qs.filter(q)
    if params.get("sizes") or params.get("colors"):
        qs = qs.distinct()
    return qs.order_by("-created_at")


def build_order_filter(*, status=None, start=None, end=None, search=None) -> Q:
    q = Q()
    if status:
        q &= Q(status=status)
    if start:
        q &= Q(created_at__date__gte=start)
    if end:
        q &= Q(created_at__date__lte=end)
    if search:
        q &= (Q(number__icontains=search) | Q(customer_name__icontains=search)
              | Q(customer_email__icontains=search))
    return q


def paginate(qs, page: int, limit: int):
    total = qs.count()
    offset = (page - 1) * limit
    items = list(qs[offset:offset + limit])
    return items, {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }
