import os
from collections.abc import Mapping
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError

from app.errors import ConfigurationError
from app.receipt.base import ProviderConfig

load_dotenv()


class Settings(BaseModel):
    """Process configuration, read once at startup and never mutated."""

    model_config = ConfigDict(frozen=True)

    ocr_provider: str = "openrouter"
    openrouter_api_key: str | None = None
    app_url: str | None = None  # sent as HTTP-Referer to OpenRouter
    veryfi_api_key: str | None = None
    veryfi_client_id: str | None = None
    veryfi_client_name: str | None = None
    ocr_model: str | None = None
    ocr_timeout: float | None = None
    cors_origins: list[str] = ["http://localhost:4200"]
    sentry_dsn: str | None = None
    log_level: str = "INFO"

    def provider_config(self) -> ProviderConfig:
        """Credentials for the selected OCR provider only."""
        if self.ocr_provider.strip().lower() == "veryfi":
            return ProviderConfig(
                api_key=self.veryfi_api_key,
                client_id=self.veryfi_client_id,
                client_name=self.veryfi_client_name,
                timeout=self.ocr_timeout,
            )
        return ProviderConfig(
            api_key=self.openrouter_api_key,
            endpoint=self.app_url,
            model=self.ocr_model,
            timeout=self.ocr_timeout,
        )


def _env(environ: Mapping[str, str], name: str, *fallbacks: str) -> str | None:
    for key in (name, *fallbacks):
        value = environ.get(key)
        if value and value.strip():
            return value.strip()
    return None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment (or an explicit mapping in tests)."""
    environ = os.environ if environ is None else environ

    def getenv(name: str, *fallbacks: str) -> str | None:
        return _env(environ, name, *fallbacks)

    values = {
        "ocr_provider": getenv("OCR_PROVIDER"),
        "openrouter_api_key": getenv("OPENROUTER_API_KEY"),
        "app_url": getenv("APP_URL", "SUPA_URL", "SUPABASE_URL"),
        "veryfi_api_key": getenv("VERYFI_API_KEY", "VERIFY_API_KEY"),
        "veryfi_client_id": getenv("VERYFI_CLIENT_ID", "VERIFY_CLIENT_ID"),
        "veryfi_client_name": getenv("VERYFI_CLIENT_NAME", "VERIFY_CLIENT_NAME"),
        "ocr_model": getenv("OCR_MODEL"),
        "ocr_timeout": getenv("OCR_TIMEOUT"),
        "sentry_dsn": getenv("SENTRY_DSN"),
        "log_level": getenv("LOG_LEVEL"),
    }
    origins = getenv("CORS_ORIGINS")
    if origins:
        values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

    try:
        return Settings(**{k: v for k, v in values.items() if v is not None})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
