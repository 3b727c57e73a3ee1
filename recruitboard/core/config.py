import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Which Submission Store backs the engine: memory | sql | supabase
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory")

    # Database configuration (sql backend)
    # Use env-provided DATABASE_URL. No hardcoded credentials.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./recruitboard.db")

    # Supabase configuration (all from env)
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")
    SUPABASE_SCHEMA: str = os.getenv("SUPABASE_SCHEMA", "public")

    # Redis snapshot mirror
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    SNAPSHOT_MIRROR_ENABLED: bool = os.getenv("SNAPSHOT_MIRROR_ENABLED", "false").lower() in ("1", "true", "yes")
    LEADERBOARD_REDIS_KEY: str = os.getenv("LEADERBOARD_REDIS_KEY", "leaderboard:recruitment")
    LEADERBOARD_CACHE_TTL_SECONDS: int = int(os.getenv("LEADERBOARD_CACHE_TTL_SECONDS", str(30 * 24 * 60 * 60)))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "recruitboard")

    # Comma-separated list, "*" for any origin
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    class Config:
        # Let BaseSettings read from project .env if present (local dev).
        env_file = ".env"


def get_settings() -> Settings:
    return Settings()
