"""
Environment-aware configuration.
Config classes are read once at import (after .env is loaded); the auth
keys are then frozen into AuthSettings and handed to the auth service.
"""
import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()  # Read .env if present


class ConfigurationError(RuntimeError):
    pass


class BaseConfig:
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    APP_ENV = os.getenv("APP_ENV", "dev")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Two independent signing keys; no defaults, startup fails without them
    ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET")
    REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "blog-api")
    ACCESS_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("ACCESS_TOKEN_EXPIRES_SECONDS", "900")))
    REFRESH_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("REFRESH_TOKEN_EXPIRES_SECONDS", "604800")))
    PASSWORD_RESET_EXPIRES = timedelta(minutes=int(os.getenv("PASSWORD_RESET_EXPIRES_MINUTES", "60")))

    # argon2 work factor
    HASH_TIME_COST = int(os.getenv("HASH_TIME_COST", "3"))
    HASH_MEMORY_COST = int(os.getenv("HASH_MEMORY_COST", "65536"))
    HASH_PARALLELISM = int(os.getenv("HASH_PARALLELISM", "4"))
    HASH_MAX_CONCURRENCY = int(os.getenv("HASH_MAX_CONCURRENCY", "4"))

    PASSWORD_RESET_URL = os.getenv("PASSWORD_RESET_URL", "http://localhost:8000/reset-password")
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM = os.getenv("SMTP_FROM")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")


class DevelopmentConfig(BaseConfig):
    DEBUG = True


class ProductionConfig(BaseConfig):
    DEBUG = False


class TestingConfig(BaseConfig):
    TESTING = True
    APP_ENV = "test"


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/prod/test).
    """
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig


@dataclass(frozen=True)
class AuthSettings:
    access_token_secret: str
    refresh_token_secret: str
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "blog-api"
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    password_reset_ttl: timedelta = timedelta(minutes=60)
    hash_time_cost: int = 3
    hash_memory_cost: int = 65536
    hash_parallelism: int = 4
    hash_max_concurrency: int = 4

    def __post_init__(self):
        if not self.access_token_secret or not self.refresh_token_secret:
            raise ConfigurationError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be set")
        if self.access_token_secret == self.refresh_token_secret:
            raise ConfigurationError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")
        if self.hash_max_concurrency < 1:
            raise ConfigurationError("HASH_MAX_CONCURRENCY must be at least 1")

    @classmethod
    def from_config(cls, config) -> "AuthSettings":
        """Build from a Flask config mapping."""
        return cls(
            access_token_secret=config.get("ACCESS_TOKEN_SECRET"),
            refresh_token_secret=config.get("REFRESH_TOKEN_SECRET"),
            jwt_algorithm=config.get("JWT_ALGORITHM", "HS256"),
            jwt_issuer=config.get("JWT_ISSUER", "blog-api"),
            access_token_ttl=config["ACCESS_TOKEN_EXPIRES"],
            refresh_token_ttl=config["REFRESH_TOKEN_EXPIRES"],
            password_reset_ttl=config["PASSWORD_RESET_EXPIRES"],
            hash_time_cost=config["HASH_TIME_COST"],
            hash_memory_cost=config["HASH_MEMORY_COST"],
            hash_parallelism=config["HASH_PARALLELISM"],
            hash_max_concurrency=config["HASH_MAX_CONCURRENCY"],
        )
