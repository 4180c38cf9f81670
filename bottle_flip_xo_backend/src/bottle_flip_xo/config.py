"""Application configuration using pydantic-settings."""

import logging
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DEFAULT_GAME_ID, GAMES_ROOT
from .store import DocumentStore, InMemoryDocumentStore

StoreBackend = Literal["memory", "firebase"]

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Settings loaded from BOTTLE_FLIP_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="BOTTLE_FLIP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Document store
    store_backend: StoreBackend = "memory"
    firebase_database_url: Optional[str] = None
    firebase_auth_token: Optional[str] = None
    http_timeout: float = 10.0
    stream_reconnect_delay: float = 2.0

    # Game layout
    games_root: str = GAMES_ROOT
    default_game_id: str = DEFAULT_GAME_ID

    # Presentation view polling interval (seconds)
    poll_interval: float = 1.0

    # HTTP
    cors_origins: List[str] = ["*"]

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def build_store(settings: Settings) -> DocumentStore:
    """Document store selected by settings.store_backend."""
    if settings.store_backend == "firebase":
        if not settings.firebase_database_url:
            raise ValueError("BOTTLE_FLIP_FIREBASE_DATABASE_URL is required for the firebase store")
        from .firebase_store import FirebaseRealtimeStore

        return FirebaseRealtimeStore(
            settings.firebase_database_url,
            auth_token=settings.firebase_auth_token,
            timeout=settings.http_timeout,
            reconnect_delay=settings.stream_reconnect_delay,
        )
    return InMemoryDocumentStore()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
