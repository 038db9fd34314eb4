from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Front door service settings.

    Read from the process environment first, then from a .env file in the
    working directory. Empty variables count as unset.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    DATABASE_URL: str

    LOG_LEVEL: str = "INFO"

    # Shared with the identity provider that issues X-Session-Token values
    SESSION_SECRET: str

    # Bearer credential for automated check-timeout callers (cron, scheduler)
    SCANNER_TOKEN: str = ""

    # Ring timeout applied when a building has no override
    RING_TIMEOUT_SECONDS: int = 30

    # In-process scanner tick; 0 disables it and relies on check-timeout
    SCANNER_INTERVAL_SECONDS: float = 0

    MAX_MESSAGE_LENGTH: int = 2000

    # Comma separated user ids with full access
    ADMIN_USER_IDS: str = ""

    @property
    def admin_user_ids(self) -> frozenset:
        return frozenset(
            user_id.strip() for user_id in self.ADMIN_USER_IDS.split(",") if user_id.strip()
        )


@lru_cache()
def get_settings() -> Settings:
    """Settings are parsed once per process; tests clear the cache to reload."""
    return Settings()


settings = get_settings()
