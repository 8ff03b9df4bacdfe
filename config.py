from typing import List, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    OPENROUTER_API_KEY: Optional[SecretStr] = None # Upstream credential, never logged
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    UPSTREAM_TIMEOUT_SECONDS: float = 180.0
    APP_REFERER: str = "https://offgridtoolkit.ai" # Sent as HTTP-Referer to identify the app
    APP_TITLE: str = "OffGrid AI ToolKit Online" # Sent as X-Title
    SERVICE_NAME: str = "OffGrid AI ToolKit Online"

    HOST: str = "0.0.0.0"
    PORT: int = 3000
    ALLOWED_ORIGINS: str = "http://localhost:3000" # Comma-separated, "*" allows all
    TRUST_PROXY: bool = True # Take the caller address from the last X-Forwarded-For hop
    MAX_BODY_BYTES: int = 10 * 1024 * 1024

    RATE_LIMIT_WINDOW_MS: int = 60000
    RATE_LIMIT_MAX_REQUESTS: int = 30

    STATIC_DIR: str = "public"
    LOG_LEVEL: str = "INFO" # Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL, NONE)

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def api_key(self) -> Optional[str]:
        if self.OPENROUTER_API_KEY is None:
            return None
        return self.OPENROUTER_API_KEY.get_secret_value() or None


settings = Settings()
