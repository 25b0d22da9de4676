import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from .errors import OutOfStock

logger = logging.getLogger("shop")


@dataclass
class CartLine:
    id: str
    nombre: str
    precio: Decimal
    cantidad: int
    stock: int
    imagen: str = ""
    talla: Optional[str] = None
    color: Optional[str] = None

    @property
    def key(self):
        return (self.id, self.talla, self.color)


class CartStorage(Protocol):
    def load(self) -> Optional[List[dict]]: ...
    def save(self, lines: List[dict]) -> None: ...
    def clear(self) -> None: ...


class MemoryCartStorage:
    def __init__(self, initial=None):
        self.data = initial

    def load(self):
        return self.data

    def save(self, lines):
        self.data = lines

    def clear(self):
        self.data = None


class SessionCartStorage:
    """Keeps the cart under one key of a Django session."""

    def __init__(self, session, key="cart"):
        self.session = session
        self.key = key

    def load(self):
        return self.session.get(self.key)

    def save(self, lines):
        self.session[self.key] = lines
        self.session.modified = True

    def clear(self):
        self.session.pop(self.key, None)


class Cart:
    """Cart lines keyed by (product id, size, color), written through on every change."""

    def __init__(self, storage: CartStorage):
        self._storage = storage
        self._lines: Dict[tuple, CartLine] = {}
        self._restore()

    def _restore(self):
        raw = self._storage.load()
        if not raw:
            return
        try:
            for data in raw:
                line = CartLine(**{**data, "precio": Decimal(str(data["precio"]))})
                self._lines[line.key] = line
        except (TypeError, KeyError, ArithmeticError, ValueError) as e:
            logger.warning("discarding unreadable cart: %s", e)
            self._lines = {}
            self._storage.clear()

    def _persist(self):
        self._storage.save([{**asdict(line), "precio": str(line.precio)} for line in self._lines.values()])

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def add(self, line: CartLine):
        existing = self._lines.get(line.key)
        wanted = line.cantidad + (existing.cantidad if existing else 0)
        stock = existing.stock if existing else line.stock
        if wanted > stock:
            raise OutOfStock(f"Solo quedan {stock} unidades disponibles")
        if existing:
            existing.cantidad = wanted
        else:
            self._lines[line.key] = line
        self._persist()

    def remove(self, product_id, talla=None, color=None):
        self._lines.pop((product_id, talla, color), None)
        self._persist()

    def update_quantity(self, product_id, cantidad, talla=None, color=None):
        if cantidad <= 0:
            self.remove(product_id, talla, color)
            return
        line = self._lines.get((product_id, talla, color))
        if line is None:
            return
        if cantidad > line.stock:
            raise OutOfStock(f"Solo quedan {line.stock} unidades disponibles")
        line.cantidad = cantidad
        self._persist()

    def clear(self):
        self._lines = {}
        self._persist()

    def total(self) -> Decimal:
        return sum((line.precio * line.cantidad for line in self._lines.values()), Decimal("0"))

    def item_count(self) -> int:
        return sum(line.cantidad for line in self._lines.values())

    def checkout_items(self) -> List[dict]:
        """Lines in the checkout request shape, without prices."""
        return [
            {"id": line.id, "cantidad": line.cantidad, "talla": line.talla, "color": line.color}
            for line in self._lines.values()
        ]
