"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from retro_importer.core.exceptions import InvalidConfigurationError

BASE_DIR = Path(__file__).resolve().parents[2]

DEFAULT_BASE_URL = "https://api.incident.io"


class Settings(BaseSettings):
    APP_NAME: str = "incident.io retrospective importer"
    LOG_LEVEL: str = "INFO"

    # incident.io credentials
    SOURCE_API_KEY: str = ""
    SOURCE_BASE_URL: str = DEFAULT_BASE_URL
    TARGET_API_KEY: str = ""
    TARGET_BASE_URL: str = DEFAULT_BASE_URL

    HTTP_TIMEOUT_SECONDS: float = 30.0
    MAX_RETRIES: int = 5
    RETRY_DELAY_SECONDS: float = 1.0
    MIN_REQUEST_INTERVAL_MS: int = 100
    PAGE_SIZE: int = 100

    IMPORT_CONCURRENCY: int = 5
    PROGRESS_EVERY: int = 10
    # Preserving incident numbers requires the target's external id counter to
    # be coordinated with the operator before the first run.
    SET_EXTERNAL_ID: bool = True

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8", extra="ignore")

    def credentials(self, environment: str) -> tuple[str, str]:
        """Return ``(api_key, base_url)`` for ``source`` or ``target``."""
        label = environment.strip().lower()
        if label == "source":
            api_key, base_url = self.SOURCE_API_KEY, self.SOURCE_BASE_URL
        elif label == "target":
            api_key, base_url = self.TARGET_API_KEY, self.TARGET_BASE_URL
        else:
            raise InvalidConfigurationError(f"Unknown environment {environment!r}", setting="environment")
        if not api_key.strip():
            raise InvalidConfigurationError(
                f"{label.upper()}_API_KEY environment variable is required",
                setting=f"{label.upper()}_API_KEY",
            )
        return api_key.strip(), (base_url or DEFAULT_BASE_URL).rstrip("/")

    @property
    def min_request_interval(self) -> float:
        return max(self.MIN_REQUEST_INTERVAL_MS, 0) / 1000.0


settings = Settings()
