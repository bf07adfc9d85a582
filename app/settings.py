from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Render Queue"
    LOG_LEVEL: str = "INFO"

    # Async driver URL: postgresql+asyncpg://... in production
    SQLALCHEMY_DATABASE_URI: str = "sqlite+aiosqlite:///./render_queue.db"

    # In-process periodic trigger
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_INTERVAL_SECONDS: float = 10.0
    SCHEDULER_MAX_JOBS_PER_TICK: int = 5

    # Render pipeline
    FRAME_COUNT: int = 4
    FALLBACK_FRAME_COUNT: int = 2
    FALLBACK_MAX_DURATION_SECONDS: int = 6
    RENDER_API_URL: str = "http://localhost:8100/v1/frames"
    RENDER_API_KEY: Optional[str] = None
    MOOD_API_URL: Optional[str] = None

    # Storage
    MEDIA_DIR: str = "./media"
    MEDIA_PUBLIC_BASE_URL: str = "http://localhost:8000/media"
    STORAGE_PREFIX: str = "media-videos"

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    # Concurrency guard
    GUARD_DEFAULT_BACKOFF_SECONDS: float = 2.0

    # Protects admin + queue trigger routes when set
    ADMIN_TOKEN: Optional[str] = None


settings = Settings()
