import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import scoped_session, sessionmaker

from cafeteria_pos import create_app
from cafeteria_pos.database import Base, build_engine
from cafeteria_pos.services.catalog_service import Catalog
from cafeteria_pos.services.ledger_service import Ledger
from cafeteria_pos.services.persistence_service import InMemoryPersistence, SqlAlchemyPersistence
from cafeteria_pos.services.sale_history_service import SaleHistory
from cafeteria_pos.services.sales_service import SaleProcessor


class FakeClock:
    """Deterministic clock; advance it to spread sales over time."""

    def __init__(self, start=datetime(2026, 10, 19, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='function')
def clock():
    return FakeClock()


@pytest.fixture(scope='function')
def persistence():
    """In-memory gateway with failure injection."""
    return InMemoryPersistence()


@pytest.fixture(scope='function')
def catalog(persistence):
    return Catalog(persistence)


@pytest.fixture(scope='function')
def ledger(catalog, persistence, clock):
    return Ledger(catalog, persistence, clock=clock)


@pytest.fixture(scope='function')
def history(persistence):
    return SaleHistory(persistence)


@pytest.fixture(scope='function')
def processor(ledger, history, clock):
    return SaleProcessor(ledger, history, default_tax_rate=Decimal('0.08'), clock=clock)


@pytest.fixture(scope='function')
def coffee(catalog, ledger):
    """COFFEE at 2.50 with 10 units in stock."""
    catalog.upsert('COFFEE', 'Coffee', '2.50')
    ledger.restock('COFFEE', 10)
    return catalog.lookup('COFFEE')


@pytest.fixture(scope='function')
def menu(catalog, ledger, coffee):
    """COFFEE plus a croissant and a muffin."""
    catalog.upsert('CROISSANT', 'Croissant', '1.75')
    ledger.restock('CROISSANT', 20)
    catalog.upsert('MUFFIN', 'Muffin de Chocolate', '2.25')
    ledger.restock('MUFFIN', 5)
    return catalog


@pytest.fixture(scope='function')
def sql_session():
    """Scoped session on a fresh in-memory SQLite database."""
    engine = build_engine('sqlite://')
    import cafeteria_pos.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    session = scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    yield session
    session.remove()
    engine.dispose()


@pytest.fixture(scope='function')
def sql_persistence(sql_session):
    return SqlAlchemyPersistence(sql_session)


@pytest.fixture(scope='function')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    return app


@pytest.fixture(scope='function')
def cli_runner(app):
    """Create CLI test runner."""
    return app.test_cli_runner()
