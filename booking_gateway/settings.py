from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class Settings:
    app_secret: str | None
    app_env: str
    jwt_algorithm: str
    google_token_uri: str
    http_timeout_seconds: float

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def require_app_secret(settings: Settings) -> str:
    """Return the signing secret or fail before any protected request is served."""

    if not settings.app_secret:
        raise RuntimeError("Environment variable APP_SECRET must be set")
    return settings.app_secret


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    app_secret = os.environ.get("APP_SECRET") or None
    app_env = os.environ.get("APP_ENV", "development").strip().lower()
    jwt_algorithm = os.environ.get("JWT_ALGORITHM", "HS256")
    google_token_uri = os.environ.get("GOOGLE_TOKEN_URI", DEFAULT_GOOGLE_TOKEN_URI)
    http_timeout_seconds = float(os.environ.get("HTTP_TIMEOUT", "30"))

    return Settings(
        app_secret=app_secret,
        app_env=app_env,
        jwt_algorithm=jwt_algorithm,
        google_token_uri=google_token_uri,
        http_timeout_seconds=http_timeout_seconds,
    )
