from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_REMOTE_TOKEN_VALIDATION_ALIAS = AliasChoices("REMOTE_TOKEN", "FLOW_NOTES_TOKEN")


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Flow Notes"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"
    log_level: str = "INFO"

    # Local durable store (notes, sync queue, cached user, watermark).
    database_url: str = "sqlite:///./.data/flow-notes.db"

    # Remote authoritative store.
    remote_base_url: str = "http://localhost:5000"
    remote_api_prefix: str = "/api"
    remote_request_timeout_seconds: float = 15.0

    # Opaque bearer credential; the cached `user` row takes over after `login`.
    remote_token: str = Field(default="", validation_alias=_REMOTE_TOKEN_VALIDATION_ALIAS)

    # Sync coordinator timing.
    sync_backoff_floor_ms: int = 1000
    sync_backoff_max_ms: int = 60_000
    sync_interval_seconds: float = 30.0
    sync_initial_delay_seconds: float = 1.0
    # Pulls re-read this much before the last watermark; reconciling is idempotent.
    sync_watermark_overlap_ms: int = 5000
    # Reference server: LWW uses lastModified, clamp how far ahead a client clock may be.
    sync_max_client_clock_skew_seconds: int = 300

    connectivity_probe_interval_seconds: float = 10.0
    save_debounce_ms: int = 800

    # Reference server bearer tokens: "token:user_id,token2:user_id2"
    server_tokens: str = ""
    server_host: str = "127.0.0.1"
    server_port: int = 5000

    @model_validator(mode="after")
    def _validate_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        errors: list[str] = []

        if self.sync_backoff_floor_ms <= 0:
            errors.append("SYNC_BACKOFF_FLOOR_MS must be positive")
        if self.sync_backoff_max_ms < self.sync_backoff_floor_ms:
            errors.append("SYNC_BACKOFF_MAX_MS must be >= SYNC_BACKOFF_FLOOR_MS")

        if self.environment.strip().lower() == "production":
            if not self.remote_base_url.strip().lower().startswith("https://"):
                errors.append("REMOTE_BASE_URL must use https in production")
            if self.server_tokens.strip():
                errors.append("SERVER_TOKENS is for the reference server; unset it in production")

        if errors:
            raise ValueError("Invalid settings: " + "; ".join(errors))
        return self

    def remote_api_base(self) -> str:
        prefix = self.remote_api_prefix.strip().strip("/")
        base = self.remote_base_url.rstrip("/")
        return f"{base}/{prefix}" if prefix else base

    def server_tokens_map(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for pair in _split_csv(self.server_tokens):
            token, sep, user_id = pair.partition(":")
            if sep and token.strip() and user_id.strip():
                out[token.strip()] = user_id.strip()
        return out

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if not self.remote_token.strip():
            warnings.append("REMOTE_TOKEN is empty; sync needs `flow-notes login` first")
        if self.remote_base_url.strip().lower().startswith("http://"):
            warnings.append("REMOTE_BASE_URL is plain http; the bearer token travels unencrypted")
        return warnings


# The validator is invoked by Pydantic at runtime.
_ = Settings._validate_settings


settings = Settings()
