"""
Procurement Portal
Configuration classes, selected by APP_ENV (development | testing | production).

Engine knobs:
    SPLINTER_WINDOW_DAYS      look-back window for the splintering detector
    SPLINTER_THRESHOLD_JMD    combined amount that raises a splintering flag
    SPLINTERING_POLICY        flag | override | block
    PROCUREMENT_OFFICER_ROLE  role whose active holders form the assignment pool
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'procurement_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

_DEV_SECRET = secrets.token_hex(32)


def _database_url():
    raw = os.getenv("DATABASE_URL", "")
    # SQLAlchemy 2.x only accepts the postgresql:// scheme
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    SPLINTER_WINDOW_DAYS = int(os.getenv("SPLINTER_WINDOW_DAYS", "30"))
    SPLINTER_THRESHOLD_JMD = os.getenv("SPLINTER_THRESHOLD_JMD", "250000")
    SPLINTERING_POLICY = os.getenv("SPLINTERING_POLICY", "flag")

    PROCUREMENT_OFFICER_ROLE = os.getenv("PROCUREMENT_OFFICER_ROLE", "PROCUREMENT")

    @classmethod
    def validate(cls):
        """Fail fast on settings the app cannot start without."""
        if cls.SPLINTER_WINDOW_DAYS < 0:
            raise RuntimeError("SPLINTER_WINDOW_DAYS must not be negative")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # in-memory SQLite: no pool sizing
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    SPLINTER_WINDOW_DAYS = 30
    SPLINTER_THRESHOLD_JMD = "250000"
    SPLINTERING_POLICY = "flag"
    PROCUREMENT_OFFICER_ROLE = "PROCUREMENT"


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    @classmethod
    def validate(cls):
        super().validate()
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
