from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_MAX_PACKET_EXTENSIONS,
    DEFAULT_PACKET_EXPIRATION_DAYS,
    PACKAGE_FORMAT_VERSION,
)


class PackageConfig(BaseModel):
    """Settings applied when packages are generated."""

    version: str = PACKAGE_FORMAT_VERSION
    expiration_days: Optional[int] = Field(default=DEFAULT_PACKET_EXPIRATION_DAYS, gt=0)
    max_extensions: int = Field(default=DEFAULT_MAX_PACKET_EXTENSIONS, ge=0)


class ReturnConfig(BaseModel):
    """Settings applied when return files are merged."""

    integrity_policy: Literal["reject", "flag"] = "reject"


class DocrouteConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    packages: PackageConfig = PackageConfig()
    returns: ReturnConfig = ReturnConfig()


def load_config(path: Optional[str] = None) -> DocrouteConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to DOCROUTE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("DOCROUTE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = DocrouteConfig(**data)
    else:
        config = DocrouteConfig()

    env_db_url = os.getenv("DOCROUTE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("DOCROUTE_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
