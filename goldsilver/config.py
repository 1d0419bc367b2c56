"""Environment-driven settings for the price loader and API adapter."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_API_URL = "https://api.metalpriceapi.com/v1/timeframe"
DEFAULT_CACHE_DIR = PROJECT_ROOT / ".cache"
DEFAULT_PRICE_FILE = PROJECT_ROOT / "data" / "prices.csv"


class Settings(BaseSettings):
    """Loader configuration; every field but the API key reads ``GOLDSILVER_<FIELD>``."""

    model_config = SettingsConfigDict(
        env_prefix="GOLDSILVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Remote price API
    api_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("METALS_API_KEY", "METALPRICEAPI_KEY"),
    )
    api_url: str = DEFAULT_API_URL
    request_timeout: float = 30.0

    # Local sources
    cache_dir: Path = DEFAULT_CACHE_DIR
    price_file: Path = DEFAULT_PRICE_FILE

    # Logging
    debug: bool = False

    @field_validator("api_key")
    @classmethod
    def _blank_key_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        return value or None

    @field_validator("request_timeout")
    @classmethod
    def _validate_positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("request timeout must be positive")
        return value
