"""Configuration module for Flask application."""
import os
import tempfile
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'farmstore')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'farmstore')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'farmstore')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Local persisted state (cart + recently viewed)
    # STATE_BACKEND: 'file' writes JSON under STATE_DIR, 'redis' uses REDIS_URL
    STATE_BACKEND = os.getenv('STATE_BACKEND', 'file')
    STATE_DIR = os.getenv('STATE_DIR', os.path.join(os.getcwd(), 'instance', 'state'))
    STATE_NAMESPACE = os.getenv('STATE_NAMESPACE', 'penchic-farm-storage')
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    VIEWED_PRODUCTS_LIMIT = int(os.getenv('VIEWED_PRODUCTS_LIMIT', '20'))

    # Stock Configuration ("Max: N in stock" hint threshold)
    LOW_STOCK_THRESHOLD = int(os.getenv('LOW_STOCK_THRESHOLD', '2'))

    # Settlement
    SETTLEMENT_TIMEOUT_SECONDS = int(os.getenv('SETTLEMENT_TIMEOUT_SECONDS', '30'))

    # M-Pesa STK push gateway
    MPESA_API_URL = os.getenv('MPESA_API_URL', '')
    MPESA_API_KEY = os.getenv('MPESA_API_KEY', '')
    MPESA_TIMEOUT = int(os.getenv('MPESA_TIMEOUT', '10'))

    # Business Information (for receipts)
    CURRENCY = os.getenv('CURRENCY', 'KES')
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'Penchic Farm')
    BUSINESS_ADDRESS = os.getenv('BUSINESS_ADDRESS', '')
    BUSINESS_PHONE = os.getenv('BUSINESS_PHONE', '')


class TestConfig(Config):
    """Configuration used by the test suite."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    STATE_BACKEND = 'file'
    STATE_DIR = os.path.join(tempfile.gettempdir(), 'farmstore-test-state')
    MPESA_API_URL = ''
