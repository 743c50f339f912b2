"""Application Configuration: environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded in production)
    - get_settings() is cached (lru_cache): single instance per process

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - Typing and realtime timings are settings so tests can shrink them
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://karma:karma@db:5432/karmafarm"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosting platforms provide postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Auth (bearer tokens issued by the identity service)
    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    # Coordination rules
    karma_allow_negative_balance: bool = True
    typing_timeout_seconds: float = 3.0
    typing_debounce_seconds: float = 0.5

    # Realtime
    realtime_queue_size: int = 256
    realtime_replay_size: int = 200
    sse_keepalive_seconds: float = 15.0

    # Settlement reconciliation (0 disables the background sweep)
    settlement_sweep_seconds: float = 60.0

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
