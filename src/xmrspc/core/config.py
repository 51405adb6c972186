"""Application settings loaded with pydantic-settings.

Only the HTTP layer reads settings. Engine functions take every option as an
explicit argument, so the settings below are defaults that a request may
override.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from xmrspc.core.engine.outliers import OutlierConfig


class Settings(BaseSettings):
    """Service settings, read from XMRSPC_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="XMRSPC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_version: str = "0.1.0"

    log_format: Literal["console", "json"] = "console"
    log_level: str = "INFO"

    # Comma-separated list of allowed browser origins
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Median-based limits when a request leaves use_median unset
    use_median: bool = False

    # Outlier consensus used by /outliers and automatic locking
    outlier_min_points: int = Field(6, ge=2)
    outlier_max_fraction: float = Field(0.25, gt=0, le=1)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def outlier_config(self, min_data_points: int | None = None) -> OutlierConfig:
        """Outlier thresholds, with an optional per-request minimum length."""
        return OutlierConfig(
            min_data_points=min_data_points or self.outlier_min_points,
            max_outlier_fraction=self.outlier_max_fraction,
        )


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance, used as a FastAPI dependency."""
    return Settings()
