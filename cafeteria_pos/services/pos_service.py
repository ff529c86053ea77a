"""
Point-of-sale service container.
Wires catalog, ledger, sale history and sale processor around one
persistence gateway and exposes them to the Flask app.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from flask import Flask, current_app

from cafeteria_pos.services.catalog_service import Catalog
from cafeteria_pos.services.ledger_service import Ledger
from cafeteria_pos.services.persistence_service import InMemoryPersistence, SqlAlchemyPersistence
from cafeteria_pos.services.sale_history_service import SaleHistory
from cafeteria_pos.services.sales_service import SaleProcessor

logger = logging.getLogger(__name__)

# Starter menu for an empty register (flask seed-catalog)
SAMPLE_PRODUCTS = [
    ('AMERICANO', 'Café Americano', '2.50', 50),
    ('CAFE-CON-LECHE', 'Café con Leche', '3.00', 45),
    ('CROISSANT', 'Croissant', '1.75', 20),
    ('MUFFIN-CHOCOLATE', 'Muffin de Chocolate', '2.25', 15),
    ('SANDWICH-MIXTO', 'Sandwich Mixto', '4.50', 10),
]


class PointOfSale:
    """
    Shared stores for every cashier of one register process.

    Sales older than ``history_since`` stay in the database but are not
    loaded into memory.
    """

    def __init__(
        self,
        persistence=None,
        tax_rate=0,
        low_stock_threshold: int = 10,
        critical_stock_threshold: int = 3,
        history_since: Optional[datetime] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.persistence = persistence if persistence is not None else InMemoryPersistence()
        self.low_stock_threshold = low_stock_threshold
        self.critical_stock_threshold = critical_stock_threshold
        self.catalog = Catalog.load(self.persistence)
        self.ledger = Ledger(self.catalog, self.persistence, clock=clock)
        self.history = SaleHistory.load(self.persistence, history_since, None)
        self.processor = SaleProcessor(self.ledger, self.history, default_tax_rate=tax_rate, clock=clock)

    def seed_sample_catalog(self) -> int:
        """Create the sample products that are missing; returns how many were added."""
        added = 0
        for product_id, name, price, stock in SAMPLE_PRODUCTS:
            if product_id in self.catalog:
                continue
            self.catalog.upsert(product_id, name, price)
            self.ledger.restock(product_id, stock, note='Sample catalog')
            added += 1
        logger.info(f"[POS] Seeded {added} sample products")
        return added


def init_pos(app: Flask, session_factory) -> PointOfSale:
    """Build the POS stores from app config and register them on the app."""
    since = None
    days = app.config.get('SALES_HISTORY_DAYS')
    if days:
        since = datetime.now() - timedelta(days=days)

    persistence = SqlAlchemyPersistence(session_factory)
    try:
        pos = PointOfSale(
            persistence=persistence,
            tax_rate=app.config.get('TAX_RATE', 0),
            low_stock_threshold=app.config.get('LOW_STOCK_THRESHOLD', 10),
            critical_stock_threshold=app.config.get('CRITICAL_STOCK_THRESHOLD', 3),
            history_since=since
        )
    finally:
        # Loading ran outside any app context; release that connection
        session_factory.remove()

    app.extensions['pos'] = pos
    app.logger.info(f"[POS] Ready: {len(pos.catalog)} products, {len(pos.history)} sales in memory")
    return pos


def get_pos() -> PointOfSale:
    """Get the POS container of the current app."""
    return current_app.extensions['pos']
