"""
Unit tests for the sale processor.
"""

import pytest
from decimal import Decimal

from cafeteria_pos.exceptions import (
    CartNotEditableError, EmptyCartError, InsufficientStockError,
    PersistenceUnavailableError, UnauthorizedError
)
from cafeteria_pos.services.cart_service import CartStatus
from cafeteria_pos.services.sales_service import SaleProcessor


class TestCommitScenarios:
    """Tests for the reference checkout scenarios."""

    def test_coffee_sale(self, coffee, processor, ledger, history, clock):
        """Test 3 coffees at 2.50 with 8% tax."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 3)

        sale = processor.commit(cart, 'cashier-1', Decimal('0.08'))

        assert sale.subtotal == Decimal('7.50')
        assert sale.tax == Decimal('0.60')
        assert sale.total == Decimal('8.10')
        assert sale.cashier_id == 'cashier-1'
        assert sale.committed_at == clock.now
        assert sale.sale_id.startswith('V-') and len(sale.sale_id) == 10
        assert ledger.stock_of('COFFEE') == 7
        assert list(history.query()) == [sale]
        assert cart.status is CartStatus.COMMITTED

    def test_insufficient_stock(self, coffee, processor, ledger, history):
        """Test that 15 coffees against a stock of 10 fails cleanly."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 15)

        with pytest.raises(InsufficientStockError) as exc:
            processor.commit(cart, 'cashier-1', Decimal('0.08'))

        assert (exc.value.product_id, exc.value.requested, exc.value.available) == ('COFFEE', 15, 10)
        assert ledger.stock_of('COFFEE') == 10
        assert len(history) == 0
        assert cart.status is CartStatus.BUILDING
        assert cart.quantity_of('COFFEE') == 15

    def test_caller_can_fix_cart_after_shortage(self, coffee, processor, ledger):
        """Test that a rejected cart can be adjusted and committed."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 15)
        with pytest.raises(InsufficientStockError):
            processor.commit(cart, 'cashier-1')

        cart.set_quantity('COFFEE', 10)
        sale = processor.commit(cart, 'cashier-1')

        assert sale.units == 10
        assert ledger.stock_of('COFFEE') == 0

    def test_empty_cart(self, coffee, processor, ledger):
        """Test that an empty cart cannot be committed."""
        cart = processor.open_cart('cashier-1')
        version = ledger.version

        with pytest.raises(EmptyCartError):
            processor.commit(cart, 'cashier-1')

        assert ledger.version == version
        assert cart.status is CartStatus.BUILDING


class TestCommitRules:
    """Tests for commit preconditions and invariants."""

    def test_default_tax_rate(self, coffee, processor):
        """Test that the configured rate applies when none is given."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 1)

        sale = processor.commit(cart, 'cashier-1')

        assert sale.tax_rate == Decimal('0.08')
        assert sale.tax == Decimal('0.20')

    def test_only_owner_can_commit(self, coffee, processor, ledger):
        """Test that another cashier cannot commit the cart."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 1)

        with pytest.raises(UnauthorizedError):
            processor.commit(cart, 'cashier-2')

        assert ledger.stock_of('COFFEE') == 10

    def test_open_cart_requires_cashier(self, processor):
        """Test that a cart needs an owner."""
        with pytest.raises(UnauthorizedError):
            processor.open_cart('')

    def test_committed_cart_is_frozen(self, coffee, processor):
        """Test that a committed cart cannot be edited or committed twice."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 1)
        processor.commit(cart, 'cashier-1')

        with pytest.raises(CartNotEditableError):
            cart.add_item('COFFEE', 1)
        with pytest.raises(CartNotEditableError):
            processor.commit(cart, 'cashier-1')

    def test_sale_is_reconstructible_from_lines(self, menu, processor):
        """Test subtotal = sum of lines and total = subtotal + tax."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 2)
        cart.add_item('CROISSANT', 3)
        cart.add_item('MUFFIN', 1)

        sale = processor.commit(cart, 'cashier-1', '0.105')

        assert sale.subtotal == sum(l.quantity * l.unit_price for l in sale.line_items)
        assert sale.total == sale.subtotal + sale.tax
        assert [l.product_id for l in sale.line_items] == ['COFFEE', 'CROISSANT', 'MUFFIN']

    def test_only_committed_products_change(self, menu, processor, ledger):
        """Test that stock drops by exactly the sold quantities."""
        before = ledger.snapshot().levels
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 2)
        cart.add_item('MUFFIN', 4)

        sale = processor.commit(cart, 'cashier-1')
        after = ledger.snapshot().levels

        for product_id in before:
            assert before[product_id] - after[product_id] == sale.quantity_of(product_id)

    def test_commit_time_is_taken_after_deduction(self, coffee, ledger, history, clock):
        """Test that the sale is stamped while its stock change is applied and locked."""
        stock_seen = []

        def stamping_clock():
            stock_seen.append(ledger.stock_of('COFFEE'))
            return clock()

        processor = SaleProcessor(ledger, history, clock=stamping_clock)
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 3)

        sale = processor.commit(cart, 'cashier-1')

        assert stock_seen == [10, 7]
        assert sale.committed_at == clock.now

    def test_sale_snapshot_is_independent_of_cart(self, coffee, processor, catalog):
        """Test that later price changes do not touch the recorded sale."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 1)
        sale = processor.commit(cart, 'cashier-1')

        catalog.upsert('COFFEE', 'Coffee', '5.00')

        assert sale.line_items[0].unit_price == Decimal('2.50')


class TestCommitPersistenceFailures:
    """Tests for the rollback policy on durable write failures."""

    @pytest.mark.parametrize('operation', ['save_stock', 'append_stock_move', 'append_sale_record', 'commit'])
    def test_failure_leaves_everything_unchanged(self, coffee, processor, ledger, history, persistence, operation):
        """Test that a gateway outage rolls back stock, history and cart."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 3)
        persistence.fail_on.add(operation)

        with pytest.raises(PersistenceUnavailableError):
            processor.commit(cart, 'cashier-1')

        assert ledger.stock_of('COFFEE') == 10
        assert persistence.stored_stock('COFFEE') == 10
        assert len(history) == 0
        assert persistence.stored_sales == []
        assert cart.status is CartStatus.BUILDING
        assert cart.quantity_of('COFFEE') == 3

    def test_retry_after_outage(self, coffee, processor, ledger, persistence):
        """Test that the same cart commits once the gateway is back."""
        cart = processor.open_cart('cashier-1')
        cart.add_item('COFFEE', 3)
        persistence.fail_on.add('commit')
        with pytest.raises(PersistenceUnavailableError):
            processor.commit(cart, 'cashier-1')

        persistence.fail_on.clear()
        sale = processor.commit(cart, 'cashier-1')

        assert ledger.stock_of('COFFEE') == 7
        assert persistence.stored_sales == [sale]
