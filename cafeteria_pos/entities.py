"""
Value objects passed between the POS services.

These are plain immutable records. The SQLAlchemy classes in
``cafeteria_pos.models`` are only the durable representation used by the
SQL persistence gateway.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from cafeteria_pos.utils.money import ZERO


def new_sale_id() -> str:
    """Sale identifiers look like ``V-1A2B3C4D``."""
    return "V-" + uuid.uuid4().hex[:8].upper()


def new_move_id() -> str:
    return "M-" + uuid.uuid4().hex[:12].upper()


class StockLevel(enum.Enum):
    """Stock level classification used by stock reports."""
    OK = "OK"
    LOW = "LOW"
    CRITICAL = "CRITICAL"
    OUT = "OUT"


class StockMoveType(enum.Enum):
    """Stock move type enum."""
    IN = "IN"
    OUT = "OUT"
    ADJUST = "ADJUST"


class StockReferenceType(enum.Enum):
    """What caused a stock move."""
    SALE = "SALE"
    RESTOCK = "RESTOCK"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class Product:
    product_id: str
    name: str
    unit_price: Decimal
    stock: int = 0


@dataclass(frozen=True)
class LineItem:
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO


@dataclass(frozen=True)
class Sale:
    """Immutable record of a committed sale."""
    sale_id: str
    cashier_id: str
    committed_at: datetime
    line_items: Tuple[LineItem, ...]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal

    @property
    def units(self) -> int:
        return sum(item.quantity for item in self.line_items)

    def quantity_of(self, product_id: str) -> int:
        return sum(item.quantity for item in self.line_items if item.product_id == product_id)


@dataclass(frozen=True)
class StockMoveLine:
    product_id: str
    delta: int


@dataclass(frozen=True)
class StockMove:
    """Audit entry for one applied ledger mutation."""
    move_id: str
    move_type: StockMoveType
    reference_type: StockReferenceType
    lines: Tuple[StockMoveLine, ...]
    created_at: datetime
    reference_id: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class StockSnapshot:
    version: int
    levels: dict = field(default_factory=dict)
