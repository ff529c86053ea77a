"""Configuration module for the cafeteria POS application."""
import os
from decimal import Decimal
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > local SQLite file
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL and os.getenv('DB_HOST'):
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST')
        DB_PORT = os.getenv('DB_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME', 'cafeteria_pos')
        DB_USER = os.getenv('DB_USER', 'pos')
        DB_PASSWORD = os.getenv('DB_PASSWORD', 'pos')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    if not DATABASE_URL:
        DATABASE_URL = 'sqlite:///' + os.path.join(os.getcwd(), 'data', 'cafeteria_pos.db')

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Sales
    TAX_RATE = Decimal(os.getenv('TAX_RATE', '0.08'))

    # Stock levels (the sales screen marked < 3 red and < 10 orange)
    LOW_STOCK_THRESHOLD = int(os.getenv('LOW_STOCK_THRESHOLD', '10'))
    CRITICAL_STOCK_THRESHOLD = int(os.getenv('CRITICAL_STOCK_THRESHOLD', '3'))

    # How many days of sales are loaded into memory at startup
    SALES_HISTORY_DAYS = int(os.getenv('SALES_HISTORY_DAYS', '90'))


class TestingConfig(Config):
    """Configuration used by the test suite."""

    TESTING = True
    DEBUG = False
    LOG_LEVEL = 'DEBUG'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    TAX_RATE = Decimal('0.08')
