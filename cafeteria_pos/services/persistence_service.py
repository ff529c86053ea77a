"""
Persistence gateways used by the catalog, ledger and sale history.

Writes are staged until ``commit()`` so a whole sale (stock rows, stock move
and sale record) lands in one transaction or not at all. Any backend failure
surfaces as ``PersistenceUnavailableError``.
"""
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from cafeteria_pos import models
from cafeteria_pos.database import shares_connection
from cafeteria_pos.entities import LineItem, Product, Sale, StockMove
from cafeteria_pos.exceptions import PersistenceUnavailableError

logger = logging.getLogger(__name__)


class PersistenceGateway(ABC):
    """Outbound persistence contract of the POS core."""

    @abstractmethod
    def load_catalog(self) -> List[Product]:
        """Return every product that is not retired, with its current stock."""

    @abstractmethod
    def save_product(self, product: Product) -> None:
        """Stage a create or update of a product's name and price."""

    @abstractmethod
    def retire_product(self, product_id: str) -> None:
        """Stage the removal of a product from the catalog; its history is kept."""

    @abstractmethod
    def save_stock(self, product_id: str, new_quantity: int) -> None:
        """Stage the new on-hand quantity of a product."""

    @abstractmethod
    def append_stock_move(self, move: StockMove) -> None:
        """Stage an audit record for a ledger mutation."""

    @abstractmethod
    def append_sale_record(self, sale: Sale) -> None:
        """Stage a committed sale."""

    @abstractmethod
    def load_sales_in_range(self, from_ts: Optional[datetime], to_ts: Optional[datetime]) -> List[Sale]:
        """Return sales with ``from_ts <= committed_at < to_ts`` in commit order."""

    @abstractmethod
    def commit(self) -> None:
        """Make every staged write of the current thread durable."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard every staged write of the current thread."""


class InMemoryPersistence(PersistenceGateway):
    """
    Process-local gateway.

    Staged writes are kept per thread, the way a scoped session keeps them,
    and applied atomically on ``commit()``. Operation names listed in
    ``fail_on`` raise ``PersistenceUnavailableError`` to simulate an outage.
    """

    def __init__(self, products: Iterable[Product] = ()):
        self._lock = threading.Lock()
        self._local = threading.local()
        self._products = {}
        self._stock = {}
        self._sales = []
        self._moves = []
        self._retired = set()
        self.fail_on = set()
        for product in products:
            self._products[product.product_id] = (product.name, product.unit_price)
            self._stock[product.product_id] = product.stock

    @property
    def _pending(self):
        if not hasattr(self._local, 'ops'):
            self._local.ops = []
        return self._local.ops

    def _check(self, operation):
        if operation in self.fail_on:
            raise PersistenceUnavailableError(operation, 'simulated outage')

    def load_catalog(self):
        self._check('load_catalog')
        with self._lock:
            return [
                Product(pid, name, price, self._stock.get(pid, 0))
                for pid, (name, price) in sorted(self._products.items())
                if pid not in self._retired
            ]

    def save_product(self, product):
        self._check('save_product')

        def apply():
            self._products[product.product_id] = (product.name, product.unit_price)
            self._stock.setdefault(product.product_id, 0)
            self._retired.discard(product.product_id)
        self._pending.append(apply)

    def retire_product(self, product_id):
        self._check('retire_product')
        self._pending.append(lambda: self._retired.add(product_id))

    def save_stock(self, product_id, new_quantity):
        self._check('save_stock')

        def apply():
            self._stock[product_id] = new_quantity
        self._pending.append(apply)

    def append_stock_move(self, move):
        self._check('append_stock_move')
        self._pending.append(lambda: self._moves.append(move))

    def append_sale_record(self, sale):
        self._check('append_sale_record')
        self._pending.append(lambda: self._sales.append(sale))

    def load_sales_in_range(self, from_ts, to_ts):
        self._check('load_sales_in_range')
        with self._lock:
            selected = [
                sale for sale in self._sales
                if (from_ts is None or sale.committed_at >= from_ts)
                and (to_ts is None or sale.committed_at < to_ts)
            ]
        return sorted(selected, key=lambda sale: sale.committed_at)

    def commit(self):
        ops = self._pending
        if 'commit' in self.fail_on:
            ops.clear()
            raise PersistenceUnavailableError('commit', 'simulated outage')
        with self._lock:
            for apply in ops:
                apply()
        ops.clear()

    def rollback(self):
        self._pending.clear()

    # Inspection helpers for callers that own this store

    def stored_stock(self, product_id) -> Optional[int]:
        with self._lock:
            return self._stock.get(product_id)

    @property
    def stored_sales(self) -> List[Sale]:
        with self._lock:
            return list(self._sales)

    @property
    def stored_moves(self) -> List[StockMove]:
        with self._lock:
            return list(self._moves)


class SqlAlchemyPersistence(PersistenceGateway):
    """
    Gateway backed by the SQLAlchemy models.

    ``session_factory`` is normally the application's ``scoped_session``:
    calling it returns the current thread's session, so concurrent cashiers
    never share a transaction.

    When every session runs on one DBAPI connection (in-memory SQLite), a
    commit or rollback would end every thread's transaction at once. In that
    case a thread holds the transaction slot from its first staged write
    until ``commit()`` succeeds or ``rollback()`` runs, and reads wait for it.
    """

    def __init__(self, session_factory, serialize_transactions: Optional[bool] = None):
        self._session_factory = session_factory
        if serialize_transactions is None:
            serialize_transactions = shares_connection(session_factory.get_bind())
        self._transaction_lock = threading.Lock() if serialize_transactions else None
        self._local = threading.local()

    @property
    def session(self):
        return self._session_factory()

    @contextmanager
    def _translate_errors(self, operation):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"[PERSISTENCE] {operation} failed: {e}")
            raise PersistenceUnavailableError(operation, e) from e

    # Transaction slot

    def _holds_slot(self) -> bool:
        return getattr(self._local, 'in_transaction', False)

    def _begin_write(self):
        if self._transaction_lock is not None and not self._holds_slot():
            self._transaction_lock.acquire()
            self._local.in_transaction = True

    def _end_transaction(self):
        if self._holds_slot():
            self._local.in_transaction = False
            self._transaction_lock.release()

    @contextmanager
    def _reading(self):
        """Run a read in the current transaction, or alone on the shared connection."""
        if self._transaction_lock is None or self._holds_slot():
            yield
            return
        with self._transaction_lock:
            try:
                yield
            finally:
                self.session.rollback()

    # Gateway operations

    def load_catalog(self):
        with self._translate_errors('load_catalog'), self._reading():
            rows = self.session.query(models.Product).options(
                selectinload(models.Product.stock)
            ).filter(models.Product.active.is_(True)).order_by(models.Product.id).all()
            return [
                Product(row.id, row.name, Decimal(str(row.unit_price)), int(row.on_hand_qty))
                for row in rows
            ]

    def save_product(self, product):
        self._begin_write()
        with self._translate_errors('save_product'):
            session = self.session
            row = session.get(models.Product, product.product_id)
            if row is None:
                row = models.Product(id=product.product_id)
                row.stock = models.ProductStock(product_id=product.product_id, on_hand_qty=0)
                session.add(row)
            row.name = product.name
            row.unit_price = product.unit_price
            row.active = True
            session.flush()

    def retire_product(self, product_id):
        self._begin_write()
        with self._translate_errors('retire_product'):
            session = self.session
            row = session.get(models.Product, product_id)
            if row is not None:
                row.active = False
                session.flush()

    def save_stock(self, product_id, new_quantity):
        self._begin_write()
        with self._translate_errors('save_stock'):
            session = self.session
            stock = session.query(models.ProductStock).filter(
                models.ProductStock.product_id == product_id
            ).with_for_update().first()
            if stock is None:
                stock = models.ProductStock(product_id=product_id, on_hand_qty=new_quantity)
                session.add(stock)
            else:
                stock.on_hand_qty = new_quantity
            session.flush()

    def append_stock_move(self, move):
        self._begin_write()
        with self._translate_errors('append_stock_move'):
            session = self.session
            row = models.StockMove(
                id=move.move_id,
                date=move.created_at,
                type=move.move_type,
                reference_type=move.reference_type,
                reference_id=move.reference_id,
                notes=move.note
            )
            for line in move.lines:
                row.lines.append(models.StockMoveLine(product_id=line.product_id, qty=line.delta))
            session.add(row)
            session.flush()

    def append_sale_record(self, sale):
        self._begin_write()
        with self._translate_errors('append_sale_record'):
            session = self.session
            row = models.Sale(
                id=sale.sale_id,
                cashier_id=sale.cashier_id,
                committed_at=sale.committed_at,
                subtotal=sale.subtotal,
                tax=sale.tax,
                total=sale.total,
                tax_rate=sale.tax_rate
            )
            for position, item in enumerate(sale.line_items):
                row.lines.append(models.SaleLine(
                    position=position,
                    product_id=item.product_id,
                    product_name=item.name,
                    qty=item.quantity,
                    unit_price=item.unit_price,
                    line_total=item.line_total
                ))
            session.add(row)
            session.flush()

    def load_sales_in_range(self, from_ts, to_ts):
        with self._translate_errors('load_sales_in_range'), self._reading():
            query = self.session.query(models.Sale).options(selectinload(models.Sale.lines))
            if from_ts is not None:
                query = query.filter(models.Sale.committed_at >= from_ts)
            if to_ts is not None:
                query = query.filter(models.Sale.committed_at < to_ts)
            rows = query.order_by(models.Sale.committed_at, models.Sale.created_at).all()
            return [_sale_from_row(row) for row in rows]

    def commit(self):
        # A failed commit keeps the slot; the caller's rollback releases it
        with self._translate_errors('commit'):
            self.session.commit()
        self._end_transaction()

    def rollback(self):
        try:
            with self._translate_errors('rollback'):
                self.session.rollback()
        finally:
            self._end_transaction()


def _sale_from_row(row) -> Sale:
    items = tuple(
        LineItem(
            product_id=line.product_id,
            name=line.product_name,
            quantity=int(line.qty),
            unit_price=Decimal(str(line.unit_price))
        )
        for line in row.lines
    )
    return Sale(
        sale_id=row.id,
        cashier_id=row.cashier_id,
        committed_at=row.committed_at,
        line_items=items,
        subtotal=Decimal(str(row.subtotal)),
        tax=Decimal(str(row.tax)),
        total=Decimal(str(row.total)),
        tax_rate=Decimal(str(row.tax_rate))
    )
