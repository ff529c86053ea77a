"""
Sales service with transactional logic.
Commits carts against the ledger and records them in the sale history.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from cafeteria_pos import metrics
from cafeteria_pos.entities import Sale, new_sale_id
from cafeteria_pos.exceptions import (
    CartNotEditableError, EmptyCartError, InsufficientStockError,
    PersistenceUnavailableError, UnauthorizedError
)
from cafeteria_pos.services.cart_service import Cart, CartStatus
from cafeteria_pos.utils.money import to_rate

logger = logging.getLogger(__name__)


class SaleProcessor:
    """Turns a cart into a recorded sale: stock deducted and sale logged, or neither."""

    def __init__(self, ledger, history, default_tax_rate=0, clock: Callable[[], datetime] = datetime.now):
        self.ledger = ledger
        self.history = history
        self.default_tax_rate = to_rate(default_tax_rate)
        self.clock = clock

    def open_cart(self, cashier_id: str) -> Cart:
        if not cashier_id:
            raise UnauthorizedError('A cashier identity is required')
        return Cart(self.ledger.catalog, cashier_id, created_at=self.clock())

    def commit(self, cart: Cart, cashier_id: str, tax_rate=None) -> Sale:
        """
        Commit a cart and return the recorded sale (the receipt payload).

        On any failure the cart is back in BUILDING with its lines untouched,
        stock is unchanged and nothing is recorded.

        Raises:
            CartNotEditableError: the cart is not in BUILDING.
            UnauthorizedError: ``cashier_id`` does not own the cart.
            EmptyCartError: the cart has no lines.
            InsufficientStockError: some product is short (see ``shortages``).
            PersistenceUnavailableError: the durable write failed and was rolled back.
        """
        # 1. Preconditions
        if cart.status is not CartStatus.BUILDING:
            raise CartNotEditableError(cart.status)
        if not cashier_id or cashier_id != cart.owner_id:
            metrics.sales_rejected_total.labels(reason='unauthorized').inc()
            raise UnauthorizedError(f'Cashier {cashier_id!r} does not own this cart')
        if cart.is_empty():
            metrics.sales_rejected_total.labels(reason='empty_cart').inc()
            raise EmptyCartError()

        # 2. Totals
        rate = self.default_tax_rate if tax_rate is None else tax_rate
        totals = cart.compute_totals(rate)
        line_items = cart.line_items
        sale_id = new_sale_id()

        # 3. Deduct stock and stage the sale in one transaction
        cart.status = CartStatus.COMMITTING
        try:
            with self.ledger.reservation(line_items, reference_id=sale_id):
                # Stamped under the product locks so history order is commit order
                sale = Sale(
                    sale_id=sale_id,
                    cashier_id=cashier_id,
                    committed_at=self.clock(),
                    line_items=line_items,
                    subtotal=totals.subtotal,
                    tax=totals.tax,
                    total=totals.total,
                    tax_rate=to_rate(rate)
                )
                self.history.stage(sale)
        except InsufficientStockError as e:
            cart.status = CartStatus.BUILDING
            metrics.sales_rejected_total.labels(reason='insufficient_stock').inc()
            logger.info(f"[SALES] Sale rejected for {cashier_id}: {e.message}")
            raise
        except PersistenceUnavailableError as e:
            cart.status = CartStatus.BUILDING
            metrics.sales_rejected_total.labels(reason='persistence').inc()
            logger.error(f"[SALES] Sale {sale_id} aborted: {e.message}")
            raise
        except Exception:
            cart.status = CartStatus.BUILDING
            raise

        # 4. Publish and close the cart
        self.history.publish(sale)
        cart.status = CartStatus.COMMITTED
        metrics.sales_committed_total.inc()
        metrics.sale_amount.observe(float(sale.total))
        logger.info(f"[SALES] Sale {sale.sale_id} committed by {cashier_id}: "
                    f"{sale.units} units, total {sale.total}")
        return sale
