"""Server configuration loaded from the environment (and an optional .env file).

Command line flags in ``main.py`` override the environment values.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "DOXY_"


class Settings(BaseModel):
    git_dir: Path
    host: str = "0.0.0.0"  # nosec B104
    port: int = 5000
    base_port: int = Field(8080, ge=1, le=65535)
    routing_mode: Literal["subdomain", "path"] = "subdomain"
    domain_suffix: str = "telltale.xyz"
    image_prefix: str = "image"
    stop_replaced: bool = False
    skip_busy_ports: bool = True
    api_key: Optional[str] = None
    proxy_timeout: float = 30.0
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("git_dir")
    @classmethod
    def _git_dir_exists(cls, value: Path) -> Path:
        if not value.is_dir():
            raise ValueError(f"git directory {value} does not exist")
        return value.resolve()

    @field_validator("domain_suffix")
    @classmethod
    def _strip_dots(cls, value: str) -> str:
        return value.strip().strip(".")


def _from_env() -> Dict[str, Any]:
    values = {}
    for name in Settings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw not in (None, ""):
            values[name] = raw
    return values


def load_settings(**overrides: Any) -> Settings:
    """Build settings from ``DOXY_*`` environment variables plus overrides.

    Overrides with a value of ``None`` are ignored so argparse defaults do not
    mask the environment.
    """
    try:
        load_dotenv(Path(".env"))
    except Exception as e:  # pragma: no cover
        logger.warning(f"Failed to load .env file: {e}")

    values = _from_env()
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)
