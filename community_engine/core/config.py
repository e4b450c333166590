from pydantic_settings import BaseSettings, SettingsConfigDict

from functools import lru_cache
from pathlib import Path


class Settings(BaseSettings):
    PROJECT_NAME: str = "Community Membership Engine"
    ENV: str = "dev"

    # Database
    DATABASE_URL: str

    # Redis (token blocklist)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    # JWT settings (tokens are issued by the identity provider)
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Membership rules
    PUBLIC_COMMUNITY_NAME: str = "India"
    REJECTED_RETENTION_DAYS: int = 30

    # Logging
    LOG_DIR: str = "logs"

    # CORS origins: comma-separated string (e.g., "http://localhost:3000,http://example.com" or "*")
    CORS_ORIGINS: str = "*"
    DEBUG: bool = True

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parent.parent.parent / ".env"),
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Convert comma-separated CORS_ORIGINS string to a list."""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Module-level cached settings instance for convenient imports (e.g. `from community_engine.core.config import settings`).
settings = get_settings()
