"""Configuration settings for the workflow builder service."""

import json
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_INPUT_JSON = json.dumps(
    {
        "matrix_a": [[1, 2], [3, 4]],
        "matrix_b": [[5, 6], [7, 8]],
        "x": [0.0, 0.5, 1.0, 1.5, 2.0],
        "y": [1.1, 1.4, 2.0, 3.1, 4.2],
    },
    indent=2,
)


class Settings(BaseSettings):
    """Application settings loaded from WORKFLOW_* environment variables.

    runaway_factor is the multiplier of the per-run task limit
    (steps * max(2, connections + 1) * factor).
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # CORS
    allowed_origins: List[str] = ["*"]

    # Engine
    runaway_factor: int = 4
    default_input_json: str = DEFAULT_INPUT_JSON
    register_builtin_tools: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
