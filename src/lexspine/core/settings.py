"""
Centralized settings for lexicon-spine.

Manifesto:
    One validated, cached settings object feeds the job engine, the
    resolution cascade, the API and the CLI. Every field can be set through
    a ``LEXSPINE_*`` environment variable or a ``.env`` file.

    Numeric tuning of the cascade (acceptance threshold, propagation
    discount, hop limit) lives here rather than in code, so it can be
    changed per deployment without touching invariants.

Tags:
    configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LexSpineSettings(BaseSettings):
    """lexicon-spine configuration.

    All fields can be set via ``LEXSPINE_*`` environment variables (e.g.
    ``LEXSPINE_CHUNK_SIZE=2000``) or through ``.env`` files.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEXSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_path: str = Field(default="data/lexspine.db", description="SQLite file, or :memory:")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="console or json")

    # ── Job engine ───────────────────────────────────────────────
    chunk_size: int = Field(default=5000, ge=1, description="Units per dictionary-import chunk")
    annotation_chunk_size: int = Field(default=500, ge=1, description="Units per corpus-annotate chunk")
    chunk_time_budget_seconds: float = Field(
        default=90.0,
        gt=0,
        description="Wall-clock budget per invocation before the job pauses",
    )
    lock_timeout_seconds: int = Field(default=600, ge=1)
    max_units_per_job: int = Field(default=2_000_000, ge=1)
    max_payload_bytes: int = Field(default=20 * 1024 * 1024, ge=1)
    worker_threads: int = Field(default=2, ge=1)
    stale_job_minutes: int = Field(default=30, ge=1)
    kill_switch_ttl_minutes: int = Field(default=30, ge=1, description="Emergency stop expires after this long")

    # ── Parser ───────────────────────────────────────────────────
    min_fragment_length: int = Field(default=3, ge=0)

    # ── Resolution cascade ───────────────────────────────────────
    acceptance_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    propagation_discount: float = Field(default=0.85, gt=0.0, le=1.0)
    propagation_max_hops: int = Field(default=3, ge=1)

    # ── Generative classifier ────────────────────────────────────
    classifier_url: str | None = Field(default=None, description="Chat-completions endpoint")
    classifier_api_key: str | None = Field(default=None)
    classifier_model: str = Field(default="google/gemini-2.5-flash")
    classifier_batch_size: int = Field(default=15, ge=1)
    classifier_timeout_seconds: float = Field(default=30.0, gt=0)
    classifier_temperature: float = Field(default=0.2, ge=0.0)

    # ── Resilience ───────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)
    cancel_rate_limit: int = Field(default=5, ge=1, description="Cancellations per caller per window")
    cancel_rate_window_seconds: float = Field(default=60.0, gt=0)
    trigger_rate_limit: int = Field(default=30, ge=1)

    # ── API ──────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8400)
    api_prefix: str = Field(default="/api/v1")
    api_key: str | None = Field(default=None, description="Shared X-API-Key; None disables auth")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    # ── Derived properties ───────────────────────────────────────

    @property
    def is_memory_db(self) -> bool:
        return self.database_path == ":memory:"

    @property
    def classifier_configured(self) -> bool:
        return bool(self.classifier_url)

    def ensure_data_dir(self) -> None:
        """Create the parent directory of the SQLite file if needed."""
        if not self.is_memory_db:
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, LexSpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> LexSpineSettings:
    """Load, validate, and cache a :class:`LexSpineSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = LexSpineSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
