"""
core/config.py
All environment variables and settings in one place.
Upstream: Dify workflow API (workflows/run)
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from note_relay.core.errors import ServerConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ─── App ───────────────────────────────────────────────
    APP_NAME: str = "Quantum Note Relay"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_ORIGINS: list[str] = ["*"]   # tighten in production

    # ─── Dify ──────────────────────────────────────────────
    DIFY_API_KEY: str = ""
    DIFY_API_URL: str = "https://api.dify.ai/v1/workflows/run"
    DIFY_TIMEOUT: Optional[float] = None   # None = wait as long as the platform allows

    # ─── Relay ─────────────────────────────────────────────
    FALLBACK_USER_PREFIX: str = "quantum-user-"
    # User-Agent substrings of runtimes that can't consume chunked transfer
    CONSTRAINED_CLIENT_MARKERS: list[str] = ["miniProgram", "MicroMessenger"]

    @property
    def has_api_key(self) -> bool:
        return bool(self.DIFY_API_KEY.strip())


@dataclass(frozen=True)
class DifyConfig:
    """Everything the relay needs to reach the workflow endpoint."""

    api_key: str
    api_url: str
    fallback_user_prefix: str
    client_markers: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DifyConfig":
        if not settings.has_api_key:
            raise ServerConfigurationError()
        return cls(
            api_key=settings.DIFY_API_KEY.strip(),
            api_url=settings.DIFY_API_URL,
            fallback_user_prefix=settings.FALLBACK_USER_PREFIX,
            client_markers=tuple(settings.CONSTRAINED_CLIENT_MARKERS),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
