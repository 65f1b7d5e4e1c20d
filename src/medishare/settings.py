"""Application settings via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings"]


class Settings(BaseSettings):
    """Central configuration, all values from environment."""

    model_config = SettingsConfigDict(env_prefix="MEDISHARE_")

    # Target environment
    environment: str = "dev"

    # PostgreSQL (durable token store); empty → no durable backend
    pg_dsn: str = ""

    # Single-process fallback when no database is configured
    use_in_memory_store: bool = True

    # Share tokens
    share_token_ttl_seconds: int = 600
    share_token_bytes: int = 32
    share_token_min_length: int = 10
    patient_token_history: int = 20
    resolve_record_limit: int = 20

    # In-memory store: prune tokens evicted from a patient's history once
    # they have been revoked or expired this long; 0 keeps them for the process lifetime
    share_token_retention_seconds: int = 0

    # Report expired tokens as not-found (hides the "code once existed" signal)
    collapse_expired: bool = False

    # Patient session verification on issue / revoke
    auth_enabled: bool = False
    session_secret: str = ""

    # Logging
    log_json: bool = True
    log_level: str = "INFO"
