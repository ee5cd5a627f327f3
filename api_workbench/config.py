"""
Runtime configuration for the API Workbench.

Values are read from ``API_WORKBENCH_*`` environment variables and fall back
to the defaults below.
"""

import os
from functools import lru_cache

from pydantic import BaseModel


ENV_PREFIX = "API_WORKBENCH_"

DEFAULT_DATABASE_URL = "sqlite:///./api_workbench.db"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_SCRIPT_TIMEOUT = 5.0
DEFAULT_OAUTH_CALLBACK_TIMEOUT = 300.0
DEFAULT_WEBSOCKET_HANDSHAKE_TIMEOUT = 10.0


class Settings(BaseModel):
    """Application settings."""
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = False
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    script_timeout: float = DEFAULT_SCRIPT_TIMEOUT
    oauth_callback_timeout: float = DEFAULT_OAUTH_CALLBACK_TIMEOUT
    websocket_handshake_timeout: float = DEFAULT_WEBSOCKET_HANDSHAKE_TIMEOUT

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        values = {}
        for field in cls.model_fields:
            raw = os.environ.get(ENV_PREFIX + field.upper())
            if raw is not None:
                values[field] = raw
        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
