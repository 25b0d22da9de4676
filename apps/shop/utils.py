import time
import uuid
from decimal import ROUND_HALF_UP, Decimal

from django.utils.text import slugify


def calculate_discount(original, current) -> int:
    """Percent off ``original`` that ``current`` represents, rounded half up.

    Returns 0 when there is no original price or it is not above the current one.
    """
    if not original:
        return 0
    original, current = Decimal(str(original)), Decimal(str(current))
    if original <= current:
        return 0
    percent = (original - current) / original * 100
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def stock_status(stock: int, minimum: int = 10) -> str:
    if stock == 0:
        return "agotado"
    if stock < minimum * 0.2:
        return "critico"
    if stock < minimum * 0.5:
        return "bajo"
    return "disponible"


def format_price(price) -> str:
    amount = int(Decimal(str(price)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return "$" + f"{amount:,}".replace(",", ".")


def unique_slug(model, value: str, *, exclude_pk=None, field: str = "slug") -> str:
    base = slugify(value) or "item"
    qs = model.objects.all()
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    candidate, counter = base, 1
    while qs.filter(**{field: candidate}).exists():
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


def base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if n == 0:
            return out


def product_slug(name: str) -> str:
    # timestamp suffix keeps renamed/duplicate product names distinct
    return f"{slugify(name) or 'producto'}-{base36(int(time.time() * 1000))}"


def generate_order_number() -> str:
    return f"PED-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9].upper()}"
