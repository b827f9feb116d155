import os
from datetime import timedelta
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'inkwell.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    DATABASE_URL = os.environ.get("DATABASE_URL") or None
    SQLALCHEMY_DATABASE_URI = DATABASE_URL or _default_sqlite_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_TIME_LIMIT = None

    SESSION_COOKIE_NAME = "inkwell_session"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.environ.get("FLASK_ENV") == "production"
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    REMEMBER_COOKIE_DURATION = timedelta(days=7)

    LLM_PROVIDER = os.environ.get("LLM_PROVIDER", "anthropic").strip().lower()
    LLM_MODEL = os.environ.get("LLM_MODEL") or None
    ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY") or None
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY") or None
    PROMPT_CONFIG_PATH = os.environ.get("PROMPT_CONFIG_PATH", str(Path(__file__).resolve().parent / "prompt_config.json"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


class TestConfig(Config):
    TESTING = True
    DATABASE_URL = None
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    LLM_PROVIDER = "anthropic"
    LLM_MODEL = None
    ANTHROPIC_API_KEY = None
    OPENAI_API_KEY = None
    SESSION_COOKIE_SECURE = False
