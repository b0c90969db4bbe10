"""
PMC Licensing Workflow
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'pmcrms_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _fee(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiter storage (memory for dev, redis:// in production)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # JWT
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))
    JWT_SET_PASSWORD_EXPIRES = int(os.getenv("JWT_SET_PASSWORD_EXPIRES", str(72 * 3600)))

    # Link e-mailed to invited officers; the token is appended as ?token=
    SET_PASSWORD_URL = os.getenv("SET_PASSWORD_URL", "http://localhost:3000/set-password")

    # Email / SMTP (optional; dev mode logs without sending)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@pmc.gov.in")

    # Send notifications on a background thread after commit
    NOTIFICATIONS_ASYNC = os.getenv("NOTIFICATIONS_ASYNC", "true").lower() == "true"

    # Blob store for uploaded / generated documents
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(basedir, "instance", "uploads"))

    # HSM signing service
    HSM_OTP_URL = os.getenv("HSM_OTP_URL", "http://localhost:8085/HSM/GenOtp")
    HSM_SIGN_URL = os.getenv("HSM_SIGN_URL", "http://localhost:8085/services/dsverifyWS")
    HSM_TIMEOUT = int(os.getenv("HSM_TIMEOUT", "60"))

    # Payment gateway
    PAYMENT_GATEWAY_URL = os.getenv("PAYMENT_GATEWAY_URL", "http://localhost:8086/payments/ve1_2/orders/create")
    PAYMENT_MERCHANT_ID = os.getenv("PAYMENT_MERCHANT_ID", "PMCMERCHANT")
    PAYMENT_RETURN_URL = os.getenv("PAYMENT_RETURN_URL", "http://localhost:5000/api/v1/payments/callback")
    PAYMENT_TIMEOUT = int(os.getenv("PAYMENT_TIMEOUT", "30"))
    # Shared secret the gateway uses to sign its callback (HMAC-SHA256)
    PAYMENT_CALLBACK_SECRET = os.getenv("PAYMENT_CALLBACK_SECRET")

    # Licence fee per position type (rupees)
    LICENCE_FEES = {
        "Architect": _fee("FEE_ARCHITECT", 3000),
        "StructuralEngineer": _fee("FEE_STRUCTURAL_ENGINEER", 3000),
        "LicenceEngineer": _fee("FEE_LICENCE_ENGINEER", 3000),
        "Supervisor1": _fee("FEE_SUPERVISOR1", 1500),
        "Supervisor2": _fee("FEE_SUPERVISOR2", 1500),
    }


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    NOTIFICATIONS_ASYNC = False
    MAIL_SERVER = None
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length"
    PAYMENT_CALLBACK_SECRET = "test-payment-callback-secret"
    UPLOAD_FOLDER = os.getenv("TEST_UPLOAD_FOLDER", os.path.join(basedir, "instance", "test_uploads"))


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Heroku-style postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if not os.getenv("HSM_OTP_URL") or not os.getenv("HSM_SIGN_URL"):
            raise RuntimeError("HSM_OTP_URL and HSM_SIGN_URL must be set in production")
        if not os.getenv("PAYMENT_CALLBACK_SECRET"):
            raise RuntimeError("PAYMENT_CALLBACK_SECRET must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
