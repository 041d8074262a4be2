"""Configuration for FastAPI application."""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional, Union
import json


class Settings(BaseSettings):
    # API Configuration
    api_prefix: str = "/api/v1"
    api_title: str = "lexicon-guard API"
    api_version: str = "1.0.0"
    allowed_origins: Union[str, List[str]] = ["*"]

    @field_validator('allowed_origins', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse allowed_origins from string or list."""
        if isinstance(v, str):
            # If it's a JSON array string, parse it
            if v.startswith('['):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [v]
            # Single origin string
            return [v]
        return v

    # Store overrides (GuardConfig.from_env covers the rest)
    guard_data_dir: Optional[str] = None
    guard_db_name: Optional[str] = None

    # Backup overrides
    backup_db_backend: Optional[str] = None
    redis_url: Optional[str] = None
    redis_password: Optional[str] = None

    # A server has nobody at a terminal to confirm a download
    backup_handoff: str = "none"

    # Uploads
    max_upload_bytes: int = 64 * 1024 * 1024

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


settings = Settings()
