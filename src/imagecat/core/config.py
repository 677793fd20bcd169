"""
Settings - Runtime configuration for the crawler, scheduler and API.

Settings come from (lowest to highest precedence):
1. Field defaults below
2. An optional YAML file (``--config catalog.yaml``)
3. Environment overrides (IMAGECAT_ADMIN_KEY, IMAGECAT_SNAPSHOT_PATH)
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..crawler.slugs import DEFAULT_ORIGIN
from .errors import ValidationError
from .rate_limiter import RateLimitConfig


ENV_ADMIN_KEY = "IMAGECAT_ADMIN_KEY"
ENV_SNAPSHOT_PATH = "IMAGECAT_SNAPSHOT_PATH"


class CatalogSettings(BaseModel):
    """Validated runtime settings"""

    model_config = ConfigDict(extra="forbid")

    # Upstream
    origin: str = DEFAULT_ORIGIN
    directory_path: str = "/directory"
    user_agent: str = "imagecat-builder/1.0"
    request_timeout: float = Field(20.0, gt=0)
    fetch_retries: int = Field(1, ge=0, le=5)
    cache_ttl: float = Field(300.0, ge=0)
    request_delay: float = Field(0.5, ge=0)
    max_request_delay: float = Field(10.0, ge=0)

    # Crawl bounds
    max_pages_cap: int = Field(5000, ge=1)
    batch_pages_default: int = Field(5, ge=1)
    max_batch_steps: int = Field(50, ge=1)

    # Scheduler (1440 ticks at one tick per minute is one day)
    reset_threshold: int = Field(1440, ge=1)
    tick_interval: float = Field(60.0, gt=0)

    # Storage
    snapshot_path: Path = Path("data/catalog.json")

    # API
    admin_key: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = Field(8787, ge=1, le=65535)

    @model_validator(mode="after")
    def _check_bounds(self) -> "CatalogSettings":
        if self.batch_pages_default > self.max_batch_steps:
            raise ValueError("batch_pages_default must not exceed max_batch_steps")
        if self.max_request_delay < self.request_delay:
            raise ValueError("max_request_delay must not be below request_delay")
        return self

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            base_delay=self.request_delay,
            min_delay=self.request_delay,
            max_delay=self.max_request_delay,
        )


def load_settings(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> CatalogSettings:
    """
    Build settings from an optional YAML file plus environment overrides.

    Args:
        path: YAML file with a mapping of setting names to values
        env: Environment mapping (defaults to os.environ)
        **overrides: Explicit values that win over everything else (None is ignored)

    Returns:
        Validated CatalogSettings

    Raises:
        ValidationError: If the file is unreadable, not a mapping, or a value is invalid
    """
    env = os.environ if env is None else env
    data: Dict[str, Any] = {}

    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except OSError as e:
            raise ValidationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(loaded, dict):
            raise ValidationError(f"Config file {path} must contain a mapping")
        data.update(loaded)

    if env.get(ENV_ADMIN_KEY):
        data["admin_key"] = env[ENV_ADMIN_KEY]
    if env.get(ENV_SNAPSHOT_PATH):
        data["snapshot_path"] = env[ENV_SNAPSHOT_PATH]

    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return CatalogSettings.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid settings: {e}") from e
