"""
Hub Relay - Configuration
All settings loaded from environment variables
"""

from datetime import timedelta
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str
    create_tables: bool = True  # Alembic owns the schema in production
    store_timeout_seconds: float = 5.0

    # Server
    listen_host: str = "0.0.0.0"
    port: int = 9000

    # Presence
    freshness_window_seconds: int = 300  # 5 minutes
    viewer_queue_size: int = 16
    history_limit_max: int = 1000

    # MQTT (optional hub ingress)
    mqtt_enabled: bool = False
    mqtt_broker: str = "localhost"
    mqtt_port: int = 1883
    mqtt_topic: str = "hubs/+/events"

    log_level: str = "INFO"

    @property
    def freshness_window(self) -> timedelta:
        """Maximum age of last_seen for a device to count as connected."""
        return timedelta(seconds=self.freshness_window_seconds)

    class Config:
        env_file = ".env"  # Fallback for local development
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
