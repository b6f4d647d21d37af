"""Runtime settings for the PAJR care pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _store_backend(value: str | None) -> str:
    if not value:
        return "local"
    token = value.strip().lower().replace("-", "_")
    mapping = {
        "local": "local",
        "file": "local",
        "jsonl": "local",
        "supabase": "supabase",
        "remote": "supabase",
    }
    return mapping.get(token, "local")


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


@dataclass(frozen=True)
class Settings:
    app_name: str = field(default_factory=lambda: os.getenv("PAJR_APP_NAME", "pajr-connect"))

    # Triage analysis collaborator.
    gemini_model: str = field(
        default_factory=lambda: os.getenv("PAJR_GEMINI_MODEL", "gemini-3-flash-preview")
    )
    gemini_fallback_model: str = field(
        default_factory=lambda: os.getenv("PAJR_GEMINI_FALLBACK_MODEL", "gemini-3-flash")
    )
    gemini_api_key: str | None = field(
        default_factory=lambda: _first_env("GEMINI_API_KEY", "API_KEY", "gemini_api_key")
    )

    request_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("PAJR_REQUEST_TIMEOUT_SEC", "20"))
    )
    analysis_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("PAJR_ANALYSIS_TIMEOUT_SEC", "30"))
    )
    media_ack_delay_sec: float = field(
        default_factory=lambda: float(os.getenv("PAJR_MEDIA_ACK_DELAY_SEC", "1.5"))
    )
    history_vitals_window: int = field(
        default_factory=lambda: int(os.getenv("PAJR_HISTORY_VITALS_WINDOW", "3"))
    )

    # Persistence
    store_backend: str = field(default_factory=lambda: _store_backend(os.getenv("PAJR_STORE_BACKEND")))
    supabase_url: str | None = field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    supabase_key: str | None = field(
        default_factory=lambda: _first_env("SUPABASE_ANON_KEY", "SUPABASE_SERVICE_KEY")
    )
    local_storage_dir: str = field(
        default_factory=lambda: os.getenv("PAJR_LOCAL_STORAGE_DIR", ".pajr_local_store")
    )

    # Attachment archive.
    s3_bucket: str | None = field(default_factory=lambda: os.getenv("PAJR_S3_BUCKET"))
    s3_region: str = field(default_factory=lambda: os.getenv("PAJR_S3_REGION", "us-east-1"))
    s3_prefix: str = field(default_factory=lambda: os.getenv("PAJR_S3_PREFIX", "pajr"))

    seed_demo_patients: bool = field(
        default_factory=lambda: _as_bool(os.getenv("PAJR_SEED_DEMO_PATIENTS"), default=True)
    )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def get_settings() -> Settings:
    return Settings()
