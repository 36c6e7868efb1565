"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Durable per-session cache tier
    database_url: str = "sqlite:///./receivables_cache.db"

    # External accounting system
    tally_api_base: str = "http://localhost:8001"
    tally_data_path: str = "/api/tally/tallydata"

    # Service
    service_name: str = "receivables-engine"
    log_level: str = "INFO"

    # HTTP Client
    fetch_timeout_seconds: float = 60.0

    # Result cache
    cache_ttl_seconds: float = 15 * 60

    # Live sessions; idle ones are forgotten, their durable tier is kept
    session_idle_seconds: float = 60 * 60
    max_sessions: int = 1000

    # Table views
    table_page_size: int = 50
    group_page_size: int = 10


settings = Settings()
