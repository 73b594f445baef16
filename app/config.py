"""
Application configuration using pydantic-settings.
All settings are loaded from environment variables.
"""

from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the directory containing this file (app/)
APP_DIR = Path(__file__).resolve().parent
# Project root is one level up
PROJECT_ROOT = APP_DIR.parent
# .env file path
ENV_FILE = PROJECT_ROOT / ".env"

# Load .env file into environment variables BEFORE pydantic-settings reads them
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App
    app_name: str = "Assurea Tarification API"
    debug: bool = False
    cors_origins: List[str] = ["http://localhost:3000"]

    # Database
    database_url: str = "postgresql+asyncpg://localhost/assurea"

    # Exade web service
    # Staging simulations are invisible on the broker's Exade dashboard
    exade_tarif_url: str = "https://stage-product.exade.fr/4DSOAP"
    exade_production_url: str = "https://www.exade.fr/4DSOAP"
    exade_soap_action: str = "A_WebService#webservice_tarificateur"
    exade_timeout_seconds: float = 30.0

    # Commission optimizer
    optimizer_max_concurrency: int = 4
    optimizer_max_insurers: int = 0  # 0 = every insurer of the baseline
    compromise_tolerance_pct: float = 10.0
    compromise_cost_weight: float = 1.0

    # Activity feed
    activity_queue_size: int = 1000

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            import json
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(",")]
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
