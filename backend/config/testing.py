"""Testing configuration."""
from datetime import timedelta

from .base import Config

class TestingConfig(Config):
    """Testing configuration class."""

    # Basic Flask config
    DEBUG = False
    TESTING = True
    SECRET_KEY = 'test-secret-key'

    # Database (in-memory SQLite for testing)
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ECHO = False

    # No Redis in tests, locks stay in-process
    REDIS_URL = None
    NOTIFICATION_CHANNEL = None

    # JWT Configuration
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=5)

    # Rate Limiting (disabled for testing)
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'

    # File Upload
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1MB for testing

    # Logging
    LOG_LEVEL = 'WARNING'
