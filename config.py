import os
import re
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()

_DURATION = re.compile(r"^(\d+)\s*([smhd]?)$")
_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

DEV_JWT_SECRET = "your-super-secret-jwt-key-change-in-production"


def parse_duration(value: str) -> int:
    """Turn '7d', '12h', '30m', '45s' or '3600' into seconds."""
    match = _DURATION.match(str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    return int(match.group(1)) * _UNITS[match.group(2)]


class Settings(BaseModel):
    environment: str = "development"
    api_prefix: str = "/api/v1"
    port: int = 8000

    database_url: str = "mongodb://127.0.0.1:27017"
    database_name: str = "ecommerce-store"

    jwt_secret: str = DEV_JWT_SECRET
    jwt_expires_in: str = "7d"

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    payment_currency: str = "usd"

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_folder: str = "ecommerce"

    public_base_url: Optional[str] = None
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    @field_validator("environment")
    @classmethod
    def _known_environment(cls, v: str) -> str:
        if v not in ("development", "production", "test"):
            raise ValueError("environment must be development, production or test")
        return v

    @field_validator("jwt_expires_in")
    @classmethod
    def _valid_duration(cls, v: str) -> str:
        parse_duration(v)
        return v

    @field_validator("api_prefix")
    @classmethod
    def _strip_prefix(cls, v: str) -> str:
        v = "/" + v.strip("/")
        return "" if v == "/" else v

    @property
    def token_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_expires_in)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def payments_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def media_configured(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else None


def load_settings() -> Settings:
    values = {
        "environment": _env("ENVIRONMENT"),
        "api_prefix": _env("API_PREFIX"),
        "port": _env("PORT"),
        "database_url": _env("DATABASE_URL"),
        "database_name": _env("DATABASE_NAME"),
        "jwt_secret": _env("JWT_SECRET"),
        "jwt_expires_in": _env("JWT_EXPIRES_IN"),
        "stripe_secret_key": _env("STRIPE_SECRET_KEY"),
        "stripe_webhook_secret": _env("STRIPE_WEBHOOK_SECRET"),
        "payment_currency": _env("PAYMENT_CURRENCY"),
        "cloudinary_cloud_name": _env("CLOUDINARY_CLOUD_NAME"),
        "cloudinary_api_key": _env("CLOUDINARY_API_KEY"),
        "cloudinary_api_secret": _env("CLOUDINARY_API_SECRET"),
        "cloudinary_folder": _env("CLOUDINARY_FOLDER"),
        "public_base_url": _env("PUBLIC_BASE_URL"),
        "log_level": _env("LOG_LEVEL"),
    }
    origins = _env("CORS_ORIGINS")
    if origins:
        values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    return Settings(**{k: v for k, v in values.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return load_settings()
