"""Database configuration and initialization."""
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def build_engine(database_uri, echo=False):
    """Create an engine with pool settings suited to the backend."""
    if database_uri.startswith('sqlite'):
        kwargs = {'connect_args': {'check_same_thread': False}}
        database = make_url(database_uri).database
        if database and database != ':memory:' and os.path.dirname(database):
            os.makedirs(os.path.dirname(database), exist_ok=True)
        if database_uri in ('sqlite://', 'sqlite:///:memory:'):
            # One shared connection, otherwise every thread sees an empty database.
            # Transactions on it must not overlap, see shares_connection().
            kwargs['poolclass'] = StaticPool
        return create_engine(database_uri, echo=echo, **kwargs)

    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20
    )


def shares_connection(bind):
    """True when every session of ``bind`` runs on the same DBAPI connection."""
    return isinstance(getattr(bind, 'pool', None), StaticPool)


def init_db(app):
    """Initialize database connection and create missing tables."""
    global engine, db_session

    engine = build_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False)
    )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register the mapped classes before creating the schema
    import cafeteria_pos.models  # noqa: F401
    Base.metadata.create_all(bind=engine)

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()

    return db_session


def get_session():
    """Get database session."""
    return db_session
