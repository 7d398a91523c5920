from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
    )

    APP_NAME: str = "Control Harmonizer"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    SQLITE_BUSY_TIMEOUT_MS: int = 5000

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Effort baseline used when a plan carries no estimated_hours
    DEFAULT_BASELINE_HOURS: int = 100

    # Upper bounds per analysis; beyond these the request is rejected as too large
    MAX_DONOR_PLANS: int = 200
    MAX_DONOR_TASKS: int = 20000
    MAX_MAPPING_EDGES: int = 100000

    MAPPING_INDEX_TTL_SECONDS: int = 300

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()
