"""Application settings.

Values come from environment variables prefixed with ``ZENFEED_`` or from a
``.env`` file in the working directory, e.g.::

    ZENFEED_BACKEND_URL=http://localhost:1300
    ZENFEED_BEARER_TOKEN=secret
    ZENFEED_SYNC_INTERVAL_SECONDS=1800
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(".env")
load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Runtime configuration for the read-state service."""

    # ---- Feed backend ----
    backend_url: str = "http://localhost:1300"
    bearer_token: Optional[str] = None
    request_timeout: float = Field(default=30.0, gt=0)
    retry_enabled: bool = False

    # ---- Read-state sync ----
    sync_interval_seconds: float = Field(default=30 * 60, gt=0)
    storage_path: Optional[Path] = Field(
        default=None,
        description="JSON file for read markers; in-memory storage when unset",
    )

    # ---- API proxy ----
    disable_api_proxy_query_config: bool = False
    disable_api_proxy_apply_config: bool = False

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="ZENFEED_",
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded on first use."""
    return Settings()
