"""Process configuration, read once from the environment."""

import logging
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_GZIP_LEVEL = -1
MIN_GZIP_LEVEL = -2
MAX_GZIP_LEVEL = 9


class Settings(BaseSettings):
    """Settings shared by every middleware. Immutable once constructed.

    Environment variables:
        HYPERDRIVE_ENVIRONMENT: e.g. "development" or "production".
        PORT: port to serve on.
        GZIP_LEVEL: compression level, -2..9. Invalid values fall back to -1.
        CORS_ENABLED, CORS_ORIGINS, CORS_HEADERS, CORS_CREDENTIALS: see
            `hyperdrive.middleware.cors`. Origins and headers are
            comma-separated.
    """

    model_config = SettingsConfigDict(
        frozen=True, populate_by_name=True, extra="ignore"
    )

    environment: str = Field("development", alias="HYPERDRIVE_ENVIRONMENT")
    port: int = Field(5000, alias="PORT")
    gzip_level: int = Field(DEFAULT_GZIP_LEVEL, alias="GZIP_LEVEL")
    cors_enabled: bool = Field(True, alias="CORS_ENABLED")
    cors_origins: str = Field("*", alias="CORS_ORIGINS")
    cors_headers: str = Field("", alias="CORS_HEADERS")
    cors_credentials: bool = Field(True, alias="CORS_CREDENTIALS")

    @field_validator("gzip_level", mode="before")
    @classmethod
    def valid_gzip_level(cls, value: object) -> int:
        try:
            level = int(str(value).strip())
        except ValueError:
            level = None
        if level is None or not MIN_GZIP_LEVEL <= level <= MAX_GZIP_LEVEL:
            logger.warning(
                "invalid GZIP_LEVEL %r, using default %d", value, DEFAULT_GZIP_LEVEL
            )
            return DEFAULT_GZIP_LEVEL
        return level

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    @property
    def cors_header_list(self) -> list[str]:
        return _split_csv(self.cors_headers)


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    return Settings()
