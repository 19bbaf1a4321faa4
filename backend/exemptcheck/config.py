"""Application configuration using Pydantic Settings."""

import os
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RULES_PATH = os.path.join(os.path.dirname(__file__), "knowledge", "sepp_part2.yaml")


class Settings(BaseSettings):
    """Settings read from ``EXEMPTCHECK_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="EXEMPTCHECK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "Exempt Development Checker"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    # A single catalogue file or a directory of .json/.yaml files
    rules_path: str = DEFAULT_RULES_PATH

    cors_origins: List[str] = ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
