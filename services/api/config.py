"""Configuration using pydantic-settings."""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """Admin API settings loaded from environment variables."""

    app_name: str = "Product Extraction Pipeline"

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    # Auth
    admin_token: Optional[str] = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
