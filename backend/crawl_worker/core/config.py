from typing import Annotated, Any

from pydantic import BeforeValidator, PostgresDsn, computed_field
from pydantic_core import MultiHostUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_log_level(v: Any) -> Any:
    if isinstance(v, str):
        return v.strip().upper()
    return v


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )
    PROJECT_NAME: str = "seo-crawl-worker"
    LOG_LEVEL: Annotated[str, BeforeValidator(parse_log_level)] = "INFO"

    # Store endpoint and service credential; both are required to start.
    POSTGRES_SERVER: str | None = None
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str | None = None
    POSTGRES_DB: str = "app"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return MultiHostUrl.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER or "localhost",
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    WORKER_ID: str | None = None
    WORKER_POLL_INTERVAL_SECONDS: float = 2.0
    WORKER_ERROR_BACKOFF_SECONDS: float = 3.0
    WORKER_RESCUE_EVERY: int = 30
    JOB_LEASE_MINUTES: int = 10
    URL_LOCK_MINUTES: int = 10
    HEARTBEAT_INTERVAL_SECONDS: float = 15.0

    FETCH_TIMEOUT_SECONDS: float = 15.0
    FETCH_MAX_REDIRECTS: int = 5
    FETCH_MAX_BYTES: int = 10 * 1024 * 1024
    CRAWLER_USER_AGENT: str = (
        "Mozilla/5.0 (compatible; SeoCrawlWorker/1.0; +https://example.com/bot)"
    )

    def missing_store_settings(self) -> list[str]:
        missing: list[str] = []
        if not self.POSTGRES_SERVER:
            missing.append("POSTGRES_SERVER")
        if not self.POSTGRES_PASSWORD:
            missing.append("POSTGRES_PASSWORD")
        return missing


settings = Settings()  # type: ignore
