"""Base configuration shared by every environment."""
import os
from datetime import timedelta

class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # JWT Configuration (identity context only, tokens are issued elsewhere)
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-in-production'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=2)
    JWT_ALGORITHM = 'HS256'
    JWT_ROLE_CLAIM = 'role'

    # Reverse proxies trusted for X-Forwarded-For (0 = use the peer address)
    PROXY_FIX_X_FOR = int(os.environ.get('PROXY_FIX_X_FOR', 0))

    # CORS
    CORS_ORIGINS = ["http://localhost:*", "https://*.vercel.app", "http://127.0.0.1:*"]

    # Rate Limiting
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_DEFAULT = "200 per day, 50 per hour"
    SUBMISSION_RATE_LIMIT = "30 per minute"

    # Redis (keyed locks and notification channel when set)
    REDIS_URL = os.environ.get('REDIS_URL') or None
    NOTIFICATION_CHANNEL = os.environ.get('NOTIFICATION_CHANNEL') or None

    # Attendance
    DEFAULT_LATE_THRESHOLD_MINUTES = 15

    # Exams
    EXAM_SUBMISSION_GRACE_SECONDS = 60

    # Concurrency
    CONFLICT_RETRY_LIMIT = 3
    LOCK_TIMEOUT_SECONDS = 10

    # File Upload
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB
    ALLOWED_EXTENSIONS = {'csv', 'xlsx', 'xls'}

    # Pagination
    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = 'logs/app.log'
