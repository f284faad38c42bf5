"""Application settings, read from the environment (and a local .env file)."""
import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name, default='0'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


def _database_url():
    """DATABASE_URL wins; otherwise assemble a PostgreSQL URL from DB_* / POSTGRES_* parts."""
    url = os.getenv('DATABASE_URL')
    if url:
        return url
    host = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
    port = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
    name = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'payables')
    user = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'payables')
    password = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'payables')
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = _flag('FLASK_DEBUG')
    ENV = os.getenv('FLASK_ENV', 'development')

    # Cookie session holding the logged-in user id
    SESSION_COOKIE_SECURE = _flag('SESSION_COOKIE_SECURE', 'false')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 8 * 3600

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ECHO = _flag('SQLALCHEMY_ECHO')

    # Hidden invoices: default recovery window when no system setting is stored
    SOFT_DELETE_RETENTION_DAYS = int(os.getenv('SOFT_DELETE_RETENTION_DAYS', '30'))
    PURGE_BATCH_SIZE = int(os.getenv('PURGE_BATCH_SIZE', '100'))
    CRON_SECRET = os.getenv('CRON_SECRET')

    # Invoice documents (S3 / MinIO)
    S3_ENDPOINT = os.getenv('S3_ENDPOINT', 'http://minio:9000')
    S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', 'minioadmin')
    S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', 'minioadmin')
    S3_BUCKET = os.getenv('S3_BUCKET', 'invoices')
    S3_REGION = os.getenv('S3_REGION', 'us-east-1')
    MAX_UPLOAD_SIZE = int(os.getenv('MAX_UPLOAD_SIZE', 10 * 1024 * 1024))
    ALLOWED_MIME_TYPES = {'application/pdf', 'image/jpeg', 'image/png'}


class TestConfig(Config):
    """SQLite file database, no CSRF, fixed cron secret."""

    TESTING = True
    DEBUG = False
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///payables-test.db')
    SQLALCHEMY_ECHO = False
    CRON_SECRET = 'test-cron-secret'
