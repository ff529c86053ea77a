"""Cart service - a cashier's in-progress sale."""
import enum
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from cafeteria_pos.entities import LineItem, Totals
from cafeteria_pos.exceptions import (
    CartNotEditableError, InvalidQuantityError, InvalidTaxRateError, UnknownProductError
)
from cafeteria_pos.utils.money import CENT, is_positive_int, to_rate


class CartStatus(enum.Enum):
    """Cart lifecycle. A failed commit returns the cart to BUILDING."""
    BUILDING = "BUILDING"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    CANCELLED = "CANCELLED"


class Cart:
    """
    Ordered line items for one sale, owned by one cashier.

    Not thread-safe: a cart belongs to a single caller. Prices are
    snapshotted from the catalog when a product is first added, so a price
    change mid-sale does not alter lines already in the cart.
    """

    def __init__(self, catalog, owner_id: str, created_at: Optional[datetime] = None):
        self.catalog = catalog
        self.owner_id = owner_id
        self.created_at = created_at or datetime.now()
        self.status = CartStatus.BUILDING
        self._lines: 'OrderedDict[str, LineItem]' = OrderedDict()

    def __repr__(self):
        return f"<Cart(owner_id='{self.owner_id}', lines={len(self._lines)}, status={self.status.value})>"

    @property
    def line_items(self) -> Tuple[LineItem, ...]:
        return tuple(self._lines.values())

    def is_empty(self) -> bool:
        return not self._lines

    def quantity_of(self, product_id: str) -> int:
        line = self._lines.get(product_id)
        return line.quantity if line else 0

    def add_item(self, product_id: str, quantity: int = 1) -> LineItem:
        """Add units of a product, merging with its existing line."""
        self._ensure_building()
        if not is_positive_int(quantity):
            raise InvalidQuantityError(quantity)

        existing = self._lines.get(product_id)
        if existing:
            line = replace(existing, quantity=existing.quantity + quantity)
        else:
            product = self.catalog.lookup(product_id)
            line = LineItem(product.product_id, product.name, quantity, product.unit_price)
        self._lines[product_id] = line
        return line

    def remove_item(self, product_id: str) -> None:
        self._ensure_building()
        if product_id not in self._lines:
            raise UnknownProductError(product_id)
        del self._lines[product_id]

    def set_quantity(self, product_id: str, quantity: int) -> Optional[LineItem]:
        """Replace a line's quantity; 0 removes the line."""
        self._ensure_building()
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidQuantityError(quantity)
        if product_id not in self._lines:
            raise UnknownProductError(product_id)
        if quantity == 0:
            del self._lines[product_id]
            return None
        line = replace(self._lines[product_id], quantity=quantity)
        self._lines[product_id] = line
        return line

    def decrement_item(self, product_id: str) -> Optional[LineItem]:
        """Take one unit off a line, dropping it at zero."""
        self._ensure_building()
        if product_id not in self._lines:
            raise UnknownProductError(product_id)
        return self.set_quantity(product_id, self._lines[product_id].quantity - 1)

    def clear(self) -> None:
        self._ensure_building()
        self._lines.clear()

    def cancel(self) -> None:
        self._ensure_building()
        self._lines.clear()
        self.status = CartStatus.CANCELLED

    def compute_totals(self, tax_rate) -> Totals:
        """
        Subtotal, tax and total for the current lines.

        Pure: no state changes, same result for the same lines and rate.
        """
        try:
            rate = to_rate(tax_rate)
        except ValueError:
            raise InvalidTaxRateError(tax_rate)
        if rate < 0:
            raise InvalidTaxRateError(tax_rate)

        subtotal = sum((line.line_total for line in self._lines.values()), Decimal('0'))
        subtotal = subtotal.quantize(CENT, rounding=ROUND_HALF_UP)
        tax = (subtotal * rate).quantize(CENT, rounding=ROUND_HALF_UP)
        return Totals(subtotal=subtotal, tax=tax, total=subtotal + tax)

    def _ensure_building(self):
        if self.status is not CartStatus.BUILDING:
            raise CartNotEditableError(self.status)
