"""
NIA Excellence Hub
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when no DATABASE_URL is set
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'excellence_hub_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _database_url(default=None):
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Cache + rate-limit storage (memory:// when Redis is not configured)
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_STORAGE_URI = REDIS_URL

    # Logging: "json" (one object per line) or "text"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Session tokens issued by the identity provider (HS256, sub = auth_id)
    SESSION_COOKIE_NAME_HUB = "hub_session"
    PROXY_COOKIE_NAME = "hub_proxy"
    PROXY_SESSION_HOURS = 4
    SESSION_TOKEN_HOURS = int(os.getenv("SESSION_TOKEN_HOURS", "12"))

    # AI
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    AI_MODEL = os.getenv("AI_MODEL", "claude-sonnet-4-5-20250929")
    AI_MAX_TOKENS = int(os.getenv("AI_MAX_TOKENS", "4096"))

    # Asana OAuth
    ASANA_CLIENT_ID = os.getenv("ASANA_CLIENT_ID")
    ASANA_CLIENT_SECRET = os.getenv("ASANA_CLIENT_SECRET")
    ASANA_REDIRECT_URI = os.getenv("ASANA_REDIRECT_URI", "http://localhost:5000/api/asana/callback")
    ASANA_SYNC_DELAY_SECONDS = 1.0

    # Browser-facing base URL for OAuth redirects back into the SPA
    APP_URL = os.getenv("APP_URL", "http://localhost:5000")

    # Cron routes require "Authorization: Bearer <CRON_SECRET>"
    CRON_SECRET = os.getenv("CRON_SECRET")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SECRET_KEY = "test-secret-key-nia-excellence-hub-0001"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    RATELIMIT_ENABLED = False
    REDIS_URL = "memory://"
    RATELIMIT_STORAGE_URI = "memory://"
    ANTHROPIC_API_KEY = None
    ASANA_CLIENT_ID = "test-client-id"
    ASANA_CLIENT_SECRET = "test-client-secret"
    ASANA_SYNC_DELAY_SECONDS = 0
    CRON_SECRET = "test-cron-secret"
    LOG_FORMAT = "text"


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
