"""
Unit tests for the catalog service.
"""

import threading
import pytest
from decimal import Decimal

from cafeteria_pos.entities import Product
from cafeteria_pos.exceptions import InvalidProductError, PersistenceUnavailableError, UnknownProductError
from cafeteria_pos.services.catalog_service import Catalog
from cafeteria_pos.services.persistence_service import InMemoryPersistence


class TestCatalogLookup:
    """Tests for lookup and listing."""

    def test_lookup_returns_product_with_stock(self, coffee, catalog):
        """Test that lookup returns name, price and current stock."""
        product = catalog.lookup('COFFEE')

        assert product == Product('COFFEE', 'Coffee', Decimal('2.50'), 10)

    def test_lookup_unknown_product(self, catalog):
        """Test that an unknown id raises UnknownProductError."""
        with pytest.raises(UnknownProductError) as exc:
            catalog.lookup('TEA')

        assert exc.value.product_id == 'TEA'
        assert exc.value.status_code == 404

    def test_list_all(self, menu):
        """Test that list_all returns every product."""
        ids = {p.product_id for p in menu.list_all()}

        assert ids == {'COFFEE', 'CROISSANT', 'MUFFIN'}
        assert len(menu) == 3
        assert 'MUFFIN' in menu

    def test_search_is_case_insensitive(self, menu):
        """Test the name filter used by the sales screen."""
        assert [p.product_id for p in menu.search('muffin')] == ['MUFFIN']
        assert len(menu.search('')) == 3
        assert menu.search('tea') == []


class TestCatalogUpsert:
    """Tests for creating and updating products."""

    def test_new_product_starts_without_stock(self, catalog):
        """Test that upsert creates a product with stock 0."""
        product = catalog.upsert('TEA', 'Tea', 1.2)

        assert product.unit_price == Decimal('1.20')
        assert catalog.lookup('TEA').stock == 0

    def test_upsert_keeps_stock(self, coffee, catalog):
        """Test that replacing name and price does not alter stock."""
        catalog.upsert('COFFEE', 'House Coffee', '2.75')
        product = catalog.lookup('COFFEE')

        assert product.name == 'House Coffee'
        assert product.unit_price == Decimal('2.75')
        assert product.stock == 10

    def test_free_product_is_allowed(self, catalog):
        """Test that a zero price is valid."""
        assert catalog.upsert('WATER', 'Water', '0').unit_price == Decimal('0.00')

    @pytest.mark.parametrize('product_id,name,price', [
        ('', 'Tea', '1.00'),
        ('   ', 'Tea', '1.00'),
        (None, 'Tea', '1.00'),
        ('TEA', '', '1.00'),
        ('TEA', 'Tea', '-0.01'),
        ('TEA', 'Tea', 'abc'),
        ('TEA', 'Tea', None),
    ])
    def test_invalid_products_are_rejected(self, catalog, product_id, name, price):
        """Test that bad definitions raise InvalidProductError and change nothing."""
        with pytest.raises(InvalidProductError):
            catalog.upsert(product_id, name, price)

        assert len(catalog) == 0

    def test_upsert_is_persisted(self, catalog, persistence):
        """Test that upsert goes through the gateway."""
        catalog.upsert('TEA', 'Tea', '1.00')

        assert [p.product_id for p in persistence.load_catalog()] == ['TEA']

    def test_upsert_persistence_failure(self, catalog, persistence):
        """Test that a failed write leaves the catalog unchanged."""
        persistence.fail_on.add('commit')

        with pytest.raises(PersistenceUnavailableError):
            catalog.upsert('TEA', 'Tea', '1.00')

        assert 'TEA' not in catalog


class TestCatalogLoad:
    """Tests for building a catalog from persistence."""

    def test_load_from_persistence(self):
        """Test that stored products and stock are loaded."""
        persistence = InMemoryPersistence([
            Product('COFFEE', 'Coffee', Decimal('2.50'), 7),
            Product('TEA', 'Tea', Decimal('1.20'), 0),
        ])

        catalog = Catalog.load(persistence)

        assert catalog.lookup('COFFEE').stock == 7
        assert catalog.lookup('TEA').unit_price == Decimal('1.20')
        assert catalog.persistence is persistence


class TestCatalogRetire:
    """Tests for removing products."""

    def test_retire_product_without_stock(self, catalog, persistence):
        """Test that a product with zero stock can be retired."""
        catalog.upsert('TEA', 'Tea', '1.20')

        product = catalog.retire('TEA')

        assert product.product_id == 'TEA'
        assert 'TEA' not in catalog
        assert persistence.load_catalog() == []

    def test_retire_product_with_stock(self, coffee, catalog):
        """Test that a product with units left cannot be retired."""
        with pytest.raises(InvalidProductError):
            catalog.retire('COFFEE')

        assert catalog.lookup('COFFEE').stock == 10

    def test_retire_unknown_product(self, catalog):
        with pytest.raises(UnknownProductError):
            catalog.retire('TEA')

    def test_retire_persistence_failure(self, catalog, persistence):
        """Test that a failed write keeps the product."""
        catalog.upsert('TEA', 'Tea', '1.20')
        persistence.fail_on.add('commit')

        with pytest.raises(PersistenceUnavailableError):
            catalog.retire('TEA')

        assert catalog.lookup('TEA').stock == 0

    def test_upsert_brings_retired_product_back(self, catalog, persistence):
        """Test re-creating a retired id."""
        catalog.upsert('TEA', 'Tea', '1.20')
        catalog.retire('TEA')

        catalog.upsert('TEA', 'Iced Tea', '1.50')

        assert catalog.lookup('TEA').name == 'Iced Tea'
        assert [p.product_id for p in persistence.load_catalog()] == ['TEA']


class TestCatalogLocking:
    """Tests for readers during a slow durable write."""

    def test_lookup_is_not_blocked_by_upsert_write(self, coffee, catalog, persistence, monkeypatch):
        """Test that lookups complete while upsert waits on the database."""
        entered = threading.Event()
        release = threading.Event()
        real_save = persistence.save_product

        def slow_save(product):
            entered.set()
            release.wait(5)
            real_save(product)

        monkeypatch.setattr(persistence, 'save_product', slow_save)
        writer = threading.Thread(target=catalog.upsert, args=('TEA', 'Tea', '1.20'))
        writer.start()
        assert entered.wait(5)

        looked_up = []
        reader = threading.Thread(target=lambda: looked_up.append(catalog.lookup('COFFEE')))
        reader.start()
        reader.join(2)
        finished_during_write = not reader.is_alive()

        release.set()
        writer.join(5)
        reader.join(5)

        assert finished_during_write
        assert looked_up[0].stock == 10
        assert catalog.lookup('TEA').unit_price == Decimal('1.20')
