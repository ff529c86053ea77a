"""
Ledger service - sole authority over stock quantities.

Every mutation:
1. Aggregates the requested deltas per product
2. Locks the affected products in sorted id order
3. Validates every delta before touching anything
4. Writes all new quantities to the catalog in one step
5. Stages stock rows and a stock move in the persistence transaction
6. Commits, or restores the previous quantities and rolls back
"""
import logging
import threading
from collections import OrderedDict, defaultdict
from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from cafeteria_pos import metrics
from cafeteria_pos.entities import (
    LineItem, Product, StockMove, StockMoveLine, StockMoveType, StockReferenceType,
    StockSnapshot, new_move_id
)
from cafeteria_pos.exceptions import (
    InsufficientStockError, InvalidQuantityError, PersistenceUnavailableError, UnknownProductError
)
from cafeteria_pos.utils.money import is_positive_int

logger = logging.getLogger(__name__)


class Ledger:
    """Applies stock changes to a ``Catalog`` atomically; stock never goes negative."""

    def __init__(self, catalog, persistence=None, clock: Callable[[], datetime] = datetime.now):
        self.catalog = catalog
        self.persistence = persistence
        self.clock = clock
        self._locks_guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    # =====================================================
    # READS
    # =====================================================

    @property
    def version(self) -> int:
        return self.catalog._stock_snapshot()[0]

    def stock_of(self, product_id: str) -> int:
        return self.catalog.lookup(product_id).stock

    def snapshot(self) -> StockSnapshot:
        """Consistent view of every stock level together with the ledger version."""
        version, levels = self.catalog._stock_snapshot()
        return StockSnapshot(version=version, levels=levels)

    def low_stock(self, threshold: int) -> List[Product]:
        """Products with stock strictly below ``threshold``, lowest first."""
        products = [p for p in self.catalog.list_all() if p.stock < threshold]
        return sorted(products, key=lambda p: (p.stock, p.product_id))

    # =====================================================
    # MUTATIONS
    # =====================================================

    def reserve_and_deduct(self, line_items: Iterable[LineItem], reference_id: Optional[str] = None) -> StockMove:
        """
        Deduct every line item's quantity, or nothing at all.

        Raises:
            UnknownProductError: a line references a product not in the catalog.
            InvalidQuantityError: a line quantity is not a positive integer.
            InsufficientStockError: at least one product is short; ``shortages``
                lists all of them.
            PersistenceUnavailableError: the durable write failed; stock is restored.
        """
        with self.reservation(line_items, reference_id=reference_id) as move:
            return move

    @contextmanager
    def reservation(self, line_items: Iterable[LineItem], reference_id: Optional[str] = None) -> Iterator[StockMove]:
        """
        Deduct stock and keep the affected products locked while the body runs.

        A clean exit commits the persistence transaction. An exception in the
        body, or a failing commit, restores the previous quantities, rolls the
        transaction back and propagates.
        """
        requested = self._aggregate(line_items)
        with self._locked(requested):
            before = self.catalog._stock_levels(requested)
            shortages = [
                (pid, qty, before[pid]) for pid, qty in requested.items() if before[pid] < qty
            ]
            if shortages:
                first_pid, first_req, first_avail = shortages[0]
                logger.info(f"[LEDGER] Rejected deduction, short on {[s[0] for s in shortages]}")
                metrics.stock_rejections_total.inc()
                raise InsufficientStockError(first_pid, first_req, first_avail, shortages)

            after = {pid: before[pid] - qty for pid, qty in requested.items()}
            move = StockMove(
                move_id=new_move_id(),
                move_type=StockMoveType.OUT,
                reference_type=StockReferenceType.SALE,
                lines=tuple(StockMoveLine(pid, -qty) for pid, qty in requested.items()),
                created_at=self.clock(),
                reference_id=reference_id,
            )
            with self._applied(before, after, move):
                yield move

            logger.debug(f"[LEDGER] Deducted {dict(requested)} (ref={reference_id})")

    def restock(self, product_id: str, quantity: int, note: Optional[str] = None) -> int:
        """Add ``quantity`` (> 0) units and return the new stock."""
        if not is_positive_int(quantity):
            raise InvalidQuantityError(quantity, 'Restock quantity must be a positive integer')
        return self._change(product_id, quantity, StockMoveType.IN, StockReferenceType.RESTOCK, note)

    def adjust_stock(self, product_id: str, delta: int, note: Optional[str] = None) -> int:
        """
        Apply a signed correction (returns, breakage, counts) and return the new stock.

        Raises:
            InvalidQuantityError: delta is zero or not an integer.
            InsufficientStockError: the correction would take stock below 0.
        """
        if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
            raise InvalidQuantityError(delta, 'Stock adjustment must be a non-zero integer')
        return self._change(product_id, delta, StockMoveType.ADJUST, StockReferenceType.MANUAL, note)

    def retire_product(self, product_id: str) -> Product:
        """Retire a product with zero stock while holding its lock (see ``Catalog.retire``)."""
        with self._locked([product_id]):
            return self.catalog.retire(product_id)

    # =====================================================
    # PRIVATE HELPERS
    # =====================================================

    def _change(self, product_id, delta, move_type, reference_type, note) -> int:
        if product_id not in self.catalog:
            raise UnknownProductError(product_id)

        with self._locked([product_id]):
            current = self.catalog._stock_levels([product_id])[product_id]
            new_quantity = current + delta
            if new_quantity < 0:
                metrics.stock_rejections_total.inc()
                raise InsufficientStockError(product_id, -delta, current)

            move = StockMove(
                move_id=new_move_id(),
                move_type=move_type,
                reference_type=reference_type,
                lines=(StockMoveLine(product_id, delta),),
                created_at=self.clock(),
                note=note,
            )
            with self._applied({product_id: current}, {product_id: new_quantity}, move):
                pass

        metrics.stock_mutations_total.labels(operation=move_type.value).inc()
        logger.info(f"[LEDGER] {move_type.value} {product_id} {delta:+d} -> {new_quantity}")
        return new_quantity

    def _aggregate(self, line_items) -> 'OrderedDict[str, int]':
        """Sum quantities per product, keeping first-seen order."""
        requested = OrderedDict()
        for item in line_items:
            if not is_positive_int(item.quantity):
                raise InvalidQuantityError(item.quantity)
            if item.product_id not in self.catalog:
                raise UnknownProductError(item.product_id)
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
        if not requested:
            raise InvalidQuantityError(0, 'Nothing to deduct')
        return requested

    @contextmanager
    def _locked(self, product_ids):
        """Hold the lock of every product, acquired in sorted order."""
        with self._locks_guard:
            locks = [self._locks[pid] for pid in sorted(set(product_ids))]
        with ExitStack() as stack:
            for lock in locks:
                stack.enter_context(lock)
            yield

    @contextmanager
    def _applied(self, before: Dict[str, int], after: Dict[str, int], move: StockMove):
        """Apply ``after`` in memory and durably; restore ``before`` on any failure."""
        self.catalog._apply_stock(after)
        try:
            if self.persistence is not None:
                for pid, quantity in after.items():
                    self.persistence.save_stock(pid, quantity)
                self.persistence.append_stock_move(move)
            yield
            if self.persistence is not None:
                self.persistence.commit()
        except Exception as e:
            self.catalog._apply_stock(before)
            if self.persistence is not None:
                try:
                    self.persistence.rollback()
                except PersistenceUnavailableError:
                    logger.exception("[LEDGER] Rollback failed after aborted stock change")
            if isinstance(e, PersistenceUnavailableError):
                logger.error(f"[LEDGER] Stock change {move.move_id} rolled back: {e.message}")
            raise
