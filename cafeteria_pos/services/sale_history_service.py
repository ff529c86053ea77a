"""Sale history service - append-only log of committed sales."""
import bisect
import logging
import threading
from datetime import datetime
from typing import Iterator, List, Optional

from cafeteria_pos.entities import Sale
from cafeteria_pos.exceptions import DuplicateSaleError, NotFoundError

logger = logging.getLogger(__name__)


class SaleQuery:
    """
    Lazy, restartable view of the sales committed in ``[from_ts, to_ts)``.

    Each iteration takes a fresh snapshot of the log, so a query object can be
    iterated again later and will include sales appended in between.
    """

    def __init__(self, history: 'SaleHistory', from_ts: Optional[datetime], to_ts: Optional[datetime]):
        self._history = history
        self.from_ts = from_ts
        self.to_ts = to_ts

    def __iter__(self) -> Iterator[Sale]:
        return iter(self._history._slice(self.from_ts, self.to_ts))

    def __repr__(self):
        return f"<SaleQuery(from_ts={self.from_ts}, to_ts={self.to_ts})>"


class SaleHistoryReader:
    """Read-only access handed to reporting collaborators."""

    def __init__(self, history: 'SaleHistory'):
        self._history = history

    def query(self, from_ts: Optional[datetime] = None, to_ts: Optional[datetime] = None) -> SaleQuery:
        return self._history.query(from_ts, to_ts)

    def get(self, sale_id: str) -> Sale:
        return self._history.get(sale_id)

    def __iter__(self) -> Iterator[Sale]:
        return iter(self._history.query())

    def __len__(self) -> int:
        return len(self._history)


class SaleHistory:
    """
    Committed sales ordered by ``committed_at`` (ties keep append order).

    ``append`` is the stand-alone entry point. Inside a sale commit the
    processor uses the two halves instead: ``stage`` writes the record into
    the open persistence transaction, ``publish`` makes the sale visible once
    that transaction has committed.
    """

    def __init__(self, persistence=None):
        self.persistence = persistence
        self._lock = threading.Lock()
        self._sales: List[Sale] = []
        self._keys: List[datetime] = []
        self._ids = {}

    @classmethod
    def load(cls, persistence, from_ts: Optional[datetime] = None, to_ts: Optional[datetime] = None) -> 'SaleHistory':
        """Build a history holding the stored sales of ``[from_ts, to_ts)``."""
        history = cls(persistence)
        sales = persistence.load_sales_in_range(from_ts, to_ts)
        for sale in sales:
            history.publish(sale)
        logger.info(f"[HISTORY] Loaded {len(sales)} sales")
        return history

    def append(self, sale: Sale) -> Sale:
        self.stage(sale)
        if self.persistence is not None:
            try:
                self.persistence.commit()
            except Exception:
                self.persistence.rollback()
                raise
        return self.publish(sale)

    def stage(self, sale: Sale) -> None:
        """Write the sale into the current persistence transaction."""
        with self._lock:
            if sale.sale_id in self._ids:
                raise DuplicateSaleError(sale.sale_id)
        if self.persistence is not None:
            self.persistence.append_sale_record(sale)

    def publish(self, sale: Sale) -> Sale:
        """Add an already durable sale to the in-memory log."""
        with self._lock:
            if sale.sale_id in self._ids:
                raise DuplicateSaleError(sale.sale_id)
            position = bisect.bisect_right(self._keys, sale.committed_at)
            self._keys.insert(position, sale.committed_at)
            self._sales.insert(position, sale)
            self._ids[sale.sale_id] = sale
        return sale

    def get(self, sale_id: str) -> Sale:
        with self._lock:
            sale = self._ids.get(sale_id)
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found", payload={'sale_id': sale_id})
        return sale

    def query(self, from_ts: Optional[datetime] = None, to_ts: Optional[datetime] = None) -> SaleQuery:
        return SaleQuery(self, from_ts, to_ts)

    def reader(self) -> SaleHistoryReader:
        return SaleHistoryReader(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sales)

    def _slice(self, from_ts, to_ts) -> List[Sale]:
        with self._lock:
            start = 0 if from_ts is None else bisect.bisect_left(self._keys, from_ts)
            end = len(self._keys) if to_ts is None else bisect.bisect_left(self._keys, to_ts)
            if end <= start:
                return []
            return self._sales[start:end]
