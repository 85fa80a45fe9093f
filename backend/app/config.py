# @TASK P0-T0.3 - pydantic-settings application settings

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


class Settings(BaseSettings):
    """Document search backend settings.

    All values are loaded from environment variables.
    A .env file in the backend directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Database ---
    DATABASE_URL: str = "postgresql+asyncpg://docsearch:docsearch@db:5432/docsearch"

    # --- JWT ---
    JWT_SECRET: str = "change-this-secret-key"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Full-text search ---
    SEARCH_LANGUAGE: str = "english"  # built-in text search configuration
    SEARCH_TEXT_CONFIG: str = "custom_search"  # created by the schema manager when permitted
    SEARCH_TRIGRAM_THRESHOLD: float = 0.2
    SEARCH_TIMEOUT_SECONDS: float = 5.0
    SEARCH_FALLTHROUGH_ON_EMPTY: bool = False
    SEARCH_SETUP_ON_STARTUP: bool = True

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the asyncpg driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    @property
    def database_name(self) -> str:
        """Database name parsed from the URL (empty when absent)."""
        return make_url(self.async_database_url).database or ""


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
