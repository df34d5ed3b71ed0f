"""Shared configuration for all services."""
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    redis_url: str = "redis://localhost:6379"
    redis_event_channel: str = "article_updates"

    # MongoDB Configuration
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "article_scheduler"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    # Worker Configuration
    worker_concurrency: int = Field(default=1, ge=1, le=4)
    consumer_poll_interval: float = 1.0
    stale_claim_timeout: int = 3600  # seconds

    # Queue-level retries
    max_retry_attempts: int = 3
    retry_base_delay: float = 60.0
    retry_max_delay: float = 3600.0

    # Pipeline phases
    phase_timeout: float = 120.0
    phase_max_attempts: int = 3
    phase_retry_base_delay: float = 1.0
    phase_retry_max_delay: float = 10.0

    # Publishing
    publish_sweep_interval: int = 3600  # seconds
    publish_batch_size: int = 100

    # Generation capability
    generation_api_url: str = "http://localhost:8080"
    generation_api_key: Optional[str] = None
    generation_request_timeout: int = 90

    # WebSocket Configuration
    ws_heartbeat_interval: int = 30

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
