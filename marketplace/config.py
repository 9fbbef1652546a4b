"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Final, Mapping, Optional

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _split_csv(value: Optional[str]) -> tuple[str, ...]:
    return tuple(part.strip() for part in (value or "").split(",") if part.strip())


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    fallback_path = BASE_DIR / "db" / "marketplace.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "ZeroWaste Market")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py + Docker)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Session tokens
    JWT_SECRET_KEY: Final[str] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    TOKEN_TTL_HOURS: Final[int] = int(os.getenv("TOKEN_TTL_HOURS", "24"))
    PASSWORD_MIN_LENGTH: Final[int] = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))
    VERIFICATION_TOKEN_TTL_HOURS: Final[int] = int(os.getenv("VERIFICATION_TOKEN_TTL_HOURS", "24"))
    RESET_TOKEN_TTL_MINUTES: Final[int] = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "60"))

    # Frontend / CORS
    FRONTEND_URL: Final[str] = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
    CORS_ALLOWED_ORIGINS: Final[tuple[str, ...]] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:3001")
    )

    # Product images
    BASE_URL: Final[str] = os.getenv("BASE_URL", "http://localhost:5000").rstrip("/")
    UPLOAD_SUBDIR: Final[str] = os.getenv("UPLOAD_SUBDIR", "uploads")
    UPLOAD_DIR: Final[Path] = Path(os.getenv("UPLOAD_DIR", (BASE_DIR / UPLOAD_SUBDIR).as_posix()))
    MAX_UPLOAD_SIZE_MB: Final[int] = int(os.getenv("MAX_UPLOAD_SIZE_MB", "25"))
    MAX_PRODUCT_IMAGES: Final[int] = int(os.getenv("MAX_PRODUCT_IMAGES", "5"))
    ALLOWED_IMAGE_EXTENSIONS: Final[tuple[str, ...]] = tuple(
        ext.lower() for ext in _split_csv(os.getenv("ALLOWED_IMAGE_EXTENSIONS", "jpg,jpeg,png,gif,webp"))
    ) or ("jpg", "jpeg", "png", "gif", "webp")
    PLACEHOLDER_IMAGE_URL: Final[str] = os.getenv(
        "PLACEHOLDER_IMAGE_URL", "https://placehold.co/400x300?text=No+Image"
    )

    # Payment gateway (Midtrans Snap)
    MIDTRANS_SERVER_KEY: Final[str] = os.getenv("MIDTRANS_SERVER_KEY", "")
    MIDTRANS_CLIENT_KEY: Final[str] = os.getenv("MIDTRANS_CLIENT_KEY", "")
    MIDTRANS_IS_PRODUCTION: Final[bool] = _str_to_bool(os.getenv("MIDTRANS_IS_PRODUCTION"), default=False)
    GATEWAY_TIMEOUT_SECONDS: Final[float] = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
    GATEWAY_MAX_RETRIES: Final[int] = int(os.getenv("GATEWAY_MAX_RETRIES", "2"))
    GATEWAY_BACKOFF_SECONDS: Final[float] = float(os.getenv("GATEWAY_BACKOFF_SECONDS", "0.5"))
    GATEWAY_CONFIG_TTL_SECONDS: Final[int] = int(os.getenv("GATEWAY_CONFIG_TTL_SECONDS", "300"))
    PAYMENT_EXPIRY_MINUTES: Final[int] = int(os.getenv("PAYMENT_EXPIRY_MINUTES", "60"))
    PENDING_ORDER_GRACE_MINUTES: Final[int] = int(os.getenv("PENDING_ORDER_GRACE_MINUTES", "30"))

    # Email (Resend)
    RESEND_API_KEY: Final[str] = os.getenv("RESEND_API_KEY", "")
    MAIL_SENDER: Final[str] = os.getenv("MAIL_SENDER", "ZeroWaste Market <no-reply@zerowastemarket.web.id>")

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")

    ORDER_HISTORY_PAGE_SIZE: Final[int] = int(os.getenv("ORDER_HISTORY_PAGE_SIZE", "10"))
    ADMIN_RECENT_PRODUCTS_LIMIT: Final[int] = int(os.getenv("ADMIN_RECENT_PRODUCTS_LIMIT", "5"))

    SUPER_ADMIN_USERNAME: Final[str] = os.getenv("SUPER_ADMIN_USERNAME", "superadmin")
    SUPER_ADMIN_PASSWORD: Final[str] = os.getenv("SUPER_ADMIN_PASSWORD", "")
    SUPER_ADMIN_EMAIL: Final[str] = os.getenv("SUPER_ADMIN_EMAIL", "superadmin@zerowastemarket.web.id")

    @classmethod
    def configure_app(cls, app: Any, overrides: Optional[Mapping[str, Any]] = None) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["JWT_SECRET_KEY"] = cls.JWT_SECRET_KEY
        app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=cls.TOKEN_TTL_HOURS)
        app.config["MAX_CONTENT_LENGTH"] = cls.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        app.config["UPLOAD_DIR"] = str(cls.UPLOAD_DIR)
        app.config["UPLOAD_SUBDIR"] = cls.UPLOAD_SUBDIR
        app.config["BASE_URL"] = cls.BASE_URL
        app.config["MAX_PRODUCT_IMAGES"] = cls.MAX_PRODUCT_IMAGES
        app.config["ALLOWED_IMAGE_EXTENSIONS"] = cls.ALLOWED_IMAGE_EXTENSIONS
        app.config["PLACEHOLDER_IMAGE_URL"] = cls.PLACEHOLDER_IMAGE_URL
        app.config["MIDTRANS_SERVER_KEY"] = cls.MIDTRANS_SERVER_KEY
        app.config["MIDTRANS_CLIENT_KEY"] = cls.MIDTRANS_CLIENT_KEY
        app.config["MIDTRANS_IS_PRODUCTION"] = cls.MIDTRANS_IS_PRODUCTION
        app.config["GATEWAY_CONFIG_TTL_SECONDS"] = cls.GATEWAY_CONFIG_TTL_SECONDS
        app.config["FRONTEND_URL"] = cls.FRONTEND_URL
        app.config["CORS_ALLOWED_ORIGINS"] = list(cls.CORS_ALLOWED_ORIGINS)
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["SUPER_ADMIN_USERNAME"] = cls.SUPER_ADMIN_USERNAME
        app.config["SUPER_ADMIN_PASSWORD"] = cls.SUPER_ADMIN_PASSWORD
        app.config["SUPER_ADMIN_EMAIL"] = cls.SUPER_ADMIN_EMAIL
        if overrides:
            app.config.update(overrides)
        Path(app.config["UPLOAD_DIR"]).mkdir(parents=True, exist_ok=True)
