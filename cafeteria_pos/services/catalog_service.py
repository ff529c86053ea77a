"""Catalog service - product definitions and the stock figures the ledger maintains."""
import logging
import threading
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from cafeteria_pos.entities import Product
from cafeteria_pos.exceptions import InvalidProductError, UnknownProductError
from cafeteria_pos.utils.money import to_money

logger = logging.getLogger(__name__)


class Catalog:
    """
    Product id -> name, unit price and current stock.

    Stock is kept apart from the definitions so that ``upsert`` can never
    clobber a concurrent stock change. Only the ``Ledger`` writes stock, via
    ``_apply_stock``; every read and write holds ``self._lock`` so readers
    see either all of a multi-product change or none of it.
    """

    def __init__(self, persistence=None):
        self._lock = threading.RLock()
        # Held by upsert and retire around their durable write; readers only take _lock
        self._write_lock = threading.Lock()
        self._definitions: Dict[str, Tuple[str, Decimal]] = {}
        self._stock: Dict[str, int] = {}
        self._version = 0
        self.persistence = persistence

    @classmethod
    def load(cls, persistence) -> 'Catalog':
        """Build a catalog from the products stored by ``persistence``."""
        catalog = cls(persistence)
        products = persistence.load_catalog()
        with catalog._lock:
            for product in products:
                catalog._definitions[product.product_id] = (product.name, product.unit_price)
                catalog._stock[product.product_id] = product.stock
        logger.info(f"[CATALOG] Loaded {len(products)} products")
        return catalog

    def lookup(self, product_id: str) -> Product:
        with self._lock:
            definition = self._definitions.get(product_id)
            if definition is None:
                raise UnknownProductError(product_id)
            name, unit_price = definition
            return Product(product_id, name, unit_price, self._stock[product_id])

    def list_all(self) -> List[Product]:
        with self._lock:
            return [
                Product(pid, name, price, self._stock[pid])
                for pid, (name, price) in self._definitions.items()
            ]

    def search(self, text: Optional[str]) -> List[Product]:
        """Case-insensitive name filter; an empty query returns everything."""
        if not text:
            return self.list_all()
        needle = text.lower()
        return [p for p in self.list_all() if needle in p.name.lower()]

    def upsert(self, product_id: str, name: str, unit_price) -> Product:
        """
        Create a product or replace its name and price.

        Stock is never touched: new products start at 0 and existing ones
        keep their quantity.

        Raises:
            InvalidProductError: empty id or name, non-numeric or negative price.
        """
        if not isinstance(product_id, str) or not product_id.strip():
            raise InvalidProductError('Product id must be a non-empty string', product_id)
        if not isinstance(name, str) or not name.strip():
            raise InvalidProductError('Product name must not be empty', product_id)
        try:
            price = to_money(unit_price)
        except ValueError:
            raise InvalidProductError(f'Invalid price {unit_price!r}', product_id)
        if price < 0:
            raise InvalidProductError(f'Price cannot be negative: {price}', product_id)

        product_id = product_id.strip()
        name = name.strip()
        with self._write_lock:
            if self.persistence is not None:
                try:
                    self.persistence.save_product(Product(product_id, name, price))
                    self.persistence.commit()
                except Exception:
                    self.persistence.rollback()
                    raise
            with self._lock:
                created = product_id not in self._definitions
                self._definitions[product_id] = (name, price)
                self._stock.setdefault(product_id, 0)
                product = Product(product_id, name, price, self._stock[product_id])

        logger.info(f"[CATALOG] {'Created' if created else 'Updated'} {product_id} ({name}) at {price}")
        return product

    def retire(self, product_id: str) -> Product:
        """
        Remove a product that has no stock left.

        Sales and stock moves that reference it are kept. Upserting the same
        id later brings it back with stock 0. When a ``Ledger`` shares this
        catalog, go through ``Ledger.retire_product`` so no stock change on the
        product is in flight.

        Raises:
            UnknownProductError: the product is not in the catalog.
            InvalidProductError: the product still has units in stock.
        """
        with self._write_lock:
            with self._lock:
                definition = self._definitions.get(product_id)
                if definition is None:
                    raise UnknownProductError(product_id)
                stock = self._stock[product_id]
                if stock > 0:
                    raise InvalidProductError(f'{product_id} still has {stock} units in stock', product_id)
                # Unknown from here on, so no sale or restock can start on it
                del self._definitions[product_id]
                del self._stock[product_id]

            if self.persistence is not None:
                try:
                    self.persistence.retire_product(product_id)
                    self.persistence.commit()
                except Exception:
                    self.persistence.rollback()
                    with self._lock:
                        self._definitions[product_id] = definition
                        self._stock[product_id] = 0
                    raise

        name, price = definition
        logger.info(f"[CATALOG] Retired {product_id} ({name})")
        return Product(product_id, name, price, 0)

    def __contains__(self, product_id) -> bool:
        with self._lock:
            return product_id in self._definitions

    def __len__(self) -> int:
        with self._lock:
            return len(self._definitions)

    # Ledger-only stock access

    def _stock_levels(self, product_ids) -> Dict[str, int]:
        with self._lock:
            for pid in product_ids:
                if pid not in self._stock:
                    raise UnknownProductError(pid)
            return {pid: self._stock[pid] for pid in product_ids}

    def _apply_stock(self, levels: Dict[str, int]) -> int:
        """Write several stock figures in one step and bump the version."""
        with self._lock:
            for pid, quantity in levels.items():
                if pid not in self._definitions:
                    raise UnknownProductError(pid)
            self._stock.update(levels)
            self._version += 1
            return self._version

    def _stock_snapshot(self) -> Tuple[int, Dict[str, int]]:
        with self._lock:
            return self._version, dict(self._stock)
