"""
Centralized application configuration implementing the 12-Factor App methodology.
Every value can be overridden through environment variables or a local .env file.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Immutable configuration schema backed by environment variables."""

    APP_NAME: str = "Cobranca"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # PostgreSQL in production (Neon, Supabase, ...); SQLite for local runs
    DATABASE_URL: str = "sqlite:///./cobranca.db"

    LOG_LEVEL: str = "INFO"
    # "standard" or "json"
    LOG_FORMAT: str = "standard"

    # Offset used to decide what "today" is for overdue classification (Brasília = UTC-3)
    TIMEZONE_OFFSET_HOURS: int = -3

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
