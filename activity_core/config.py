"""
Activity Core
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'activity_core_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _env_float(name, default):
    return float(os.getenv(name, str(default)))


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _database_url(fallback=None):
    """DATABASE_URL with the postgres:// scheme SQLAlchemy 2 rejects rewritten."""
    url = os.getenv("DATABASE_URL", "")
    return url.replace("postgres://", "postgresql://", 1) if url else fallback


class Config:
    """Base configuration shared across all environments."""

    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Orphan resolution
    ORPHAN_MIN_NAME_LENGTH = _env_int("ORPHAN_MIN_NAME_LENGTH", 3)
    ORPHAN_FUZZY_MATCH_ENABLED = os.getenv("ORPHAN_FUZZY_MATCH_ENABLED", "false").lower() == "true"
    ORPHAN_FUZZY_THRESHOLD = _env_float("ORPHAN_FUZZY_THRESHOLD", 0.6)
    UNSORTED_PROJECT_NAME = os.getenv("UNSORTED_PROJECT_NAME", "Unsorted Tasks")

    # Deduplication
    DEDUP_COSINE_THRESHOLD = _env_float("DEDUP_COSINE_THRESHOLD", 0.6)
    DEDUP_MAX_PAIRS_PER_RUN = _env_int("DEDUP_MAX_PAIRS_PER_RUN", 20)
    DEDUP_AUTO_MERGE_CONFIDENCE = _env_float("DEDUP_AUTO_MERGE_CONFIDENCE", 0.9)
    DEDUP_APPROVAL_CONFIDENCE = _env_float("DEDUP_APPROVAL_CONFIDENCE", 0.7)
    SEMANTIC_CANDIDATE_THRESHOLD = _env_float("SEMANTIC_CANDIDATE_THRESHOLD", 0.5)

    # LLM oracle
    LLM_DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "claude-3-5-haiku-20241022")
    LLM_TIMEOUT_SECONDS = _env_float("LLM_TIMEOUT_SECONDS", 30)


class DevelopmentConfig(Config):
    """Local SQLite file unless DATABASE_URL points at PostgreSQL."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """In-memory SQLite, fuzzy orphan matching off."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    ORPHAN_FUZZY_MATCH_ENABLED = False
    UNSORTED_PROJECT_NAME = "Unsorted Tasks"


class ProductionConfig(Config):
    """PostgreSQL (pgvector) required."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
