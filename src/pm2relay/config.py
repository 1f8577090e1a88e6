"""
Centralized Configuration System
Environment-aware settings for the log relay and its delivery queues.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal


# ============================================
# FIXED DELIVERY LIMITS
# ============================================
DEDUPE_WINDOW_MS = 2000         # Identical lines within this window are suppressed
MAX_MESSAGE_LENGTH = 1900       # Stays under Discord's 2000 char content limit
TRUNCATION_MARKER = "…"
DEFAULT_RETRY_AFTER_MS = 1000   # Used when a 429 carries no usable delay
NETWORK_RETRY_MS = 1000         # Backoff after a request got no response
RETRY_MARGIN_MS = 50            # Added on top of a rate-limit delay
MIN_RESCHEDULE_MS = 50          # Floor for re-checking a paused queue


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Relay configuration.
    Loaded once at startup from environment variables (or .env).
    """

    # ============================================
    # WEBHOOK DESTINATION
    # ============================================
    discord_webhook_url: str
    wait_for_message: bool = True  # Ask Discord to return the created message (needed for deletion)

    # ============================================
    # LOG SOURCE
    # ============================================
    pm2_app_name: str = "all"  # PM2 app name, or "all" for every app

    # ============================================
    # MESSAGE LIFECYCLE
    # ============================================
    delete_after_seconds: float = 20  # 0 disables deletion
    shutdown_flush_seconds: float = 5.0

    # ============================================
    # OBSERVABILITY
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for JSON logs

    @field_validator("discord_webhook_url")
    @classmethod
    def _require_webhook_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Missing DISCORD_WEBHOOK_URL")
        return value

    @field_validator("delete_after_seconds", "shutdown_flush_seconds")
    @classmethod
    def _clamp_non_negative(cls, value: float) -> float:
        return max(0.0, value)

    @property
    def monitors_all_apps(self) -> bool:
        return self.pm2_app_name.lower() == "all"


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()
