# clientdesk/core/settings.py
from __future__ import annotations

import json
import os
from typing import Any, List, Union

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WEBHOOK_EVENTS = [
    "deliverable.uploaded",
    "deliverable.approved",
    "revision.requested",
    "revision.completed",
]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _split_list(v: Any) -> List[str]:
    """
    Listas desde env: JSON '["a","b"]', corchetes sin comillas [a,b] o CSV a,b.
    """
    if v in (None, "", [], ()):
        return []
    if isinstance(v, (list, tuple)):
        return [str(x) for x in v]
    s = str(v).strip()
    if s.startswith("[") and s.endswith("]"):
        try:
            parsed = json.loads(s)
        except ValueError:
            s = s[1:-1]
        else:
            if isinstance(parsed, list):
                return [str(x) for x in parsed]
    return [item.strip().strip('"').strip("'") for item in s.split(",") if item.strip()]


class Settings(BaseSettings):
    # ---- App / API ----
    APP_NAME: str = "Client Deliverables Dashboard"
    API_V1_STR: str = "/api/v1"
    ENV: str = "dev"
    DEBUG: bool = True
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # ---- JWT (emitido por el servicio de identidad) ----
    JWT_SECRET_KEY: str = "dev-secret"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60)

    # ---- DB ----
    DATABASE_URL: str = "sqlite:///./clientdesk.db"
    # reintentos si dos escritores chocan con el mismo version_number
    VERSION_ALLOC_MAX_RETRIES: int = int(os.getenv("VERSION_ALLOC_MAX_RETRIES", "5"))

    @property
    def SQLALCHEMY_DATABASE_URL(self) -> str:
        """
        postgres:// / postgresql:// / postgresql+psycopg:// -> postgresql+psycopg2://
        (el driver instalado es psycopg2-binary). sqlite y demás se dejan igual.
        """
        url = self.DATABASE_URL or ""
        for prefix in ("postgres://", "postgresql://", "postgresql+psycopg://"):
            if url.startswith(prefix):
                return "postgresql+psycopg2://" + url[len(prefix):]
        return url

    # ---- CORS (el dashboard vive en otro origen) ----
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v):
        return _split_list(v)

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return [str(x) for x in (self.BACKEND_CORS_ORIGINS or [])]

    # ---- Escrituras: rate limit + Idempotency-Key ----
    RATELIMIT_ENABLED: bool = _env_flag("RATELIMIT_ENABLED")
    RATELIMIT_WRITE_PER_MIN: int = int(os.getenv("RATELIMIT_WRITE_PER_MIN", "60"))
    IDEMPOTENCY_ENABLED: bool = _env_flag("IDEMPOTENCY_ENABLED", "true")
    IDEMPOTENCY_TTL_SECONDS: int = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", "86400"))

    # ---- Archivos: Firebase Storage si hay credenciales, si no disco local ----
    FIREBASE_CREDENTIALS_PATH: str | None = os.getenv("FIREBASE_CREDENTIALS_PATH")
    FIREBASE_STORAGE_BUCKET: str | None = os.getenv("FIREBASE_STORAGE_BUCKET")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "./uploads")
    UPLOAD_MAX_MB: int = int(os.getenv("UPLOAD_MAX_MB", "50"))

    # ---- Webhooks hacia el servicio de notificaciones ----
    WEBHOOKS_ENABLED: bool = _env_flag("WEBHOOKS_ENABLED")
    WEBHOOKS_TIMEOUT_SECONDS: float = float(os.getenv("WEBHOOKS_TIMEOUT_SECONDS", "3"))
    WEBHOOKS_MAX_RETRIES: int = int(os.getenv("WEBHOOKS_MAX_RETRIES", "3"))
    WEBHOOKS_BACKOFF_SECONDS: float = float(os.getenv("WEBHOOKS_BACKOFF_SECONDS", "0.5"))
    WEBHOOKS_SYNC_FOR_TEST: bool = _env_flag("WEBHOOKS_SYNC_FOR_TEST")
    WEBHOOKS_DEFAULT_EVENTS: List[str] = Field(default_factory=lambda: list(DEFAULT_WEBHOOK_EVENTS))

    @field_validator("WEBHOOKS_DEFAULT_EVENTS", mode="before")
    @classmethod
    def _parse_webhook_events(cls, v):
        return _split_list(v) or list(DEFAULT_WEBHOOK_EVENTS)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
