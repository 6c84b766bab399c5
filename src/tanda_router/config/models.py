"""Pydantic models for router configuration. Central contract for IDE and validation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


DEFAULT_FALLBACK_RESPONSE = (
    "Ocurrió un error procesando tu mensaje. Por favor intenta de nuevo "
    'o escribe "ayuda" para ver las opciones disponibles.'
)


# --- Durable session backend ---


class DatabaseConfig(BaseModel):
    """PostgreSQL connection settings for the session table."""

    dsn: str | None = Field(
        default=None,
        description="postgresql:// DSN. When unset the store runs cache-only.",
    )
    table: str = Field(default="adk_sessions", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    pool_min_size: int = Field(default=1, ge=1)
    pool_max_size: int = Field(default=5, ge=1)
    query_timeout_seconds: float = Field(default=10.0, gt=0)


# --- Top-level router config ---


class RouterConfig(BaseModel):
    """Full router configuration loaded from YAML."""

    app_name: str = Field(default="pasatanda", min_length=1, description="Session namespace")
    dedup_ttl_seconds: float = Field(default=600.0, gt=0, description="Window for retried message ids")
    delegation_timeout_seconds: float = Field(default=30.0, gt=0)
    fallback_response: str = Field(default=DEFAULT_FALLBACK_RESPONSE, min_length=1)
    serialize_sessions: bool = Field(
        default=True,
        description="Run route calls for the same session one at a time within this process.",
    )
    # Relaying handler text back to the user is owned by the transport side.
    send_agent_text: bool = False
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    # LLM endpoint (optional in config; can be overridden by env)
    llm_base_url: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
