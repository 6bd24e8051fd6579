"""Pydantic models for connection profiles and run settings."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from data_migrator.constants import (
    DEFAULT_API_VERSION,
    MAX_PARALLEL_REQUESTS,
    POLL_TIMEOUT_MS,
)


# ============================================================================
# Configuration Models
# ============================================================================


class EndpointProfile(BaseModel):
    """Connection profile from migrate.toml."""

    kind: Literal["live", "database", "file"]
    description: str = ""

    # live
    instance_url: str | None = None
    access_token: str | None = None
    access_token_env: str | None = None
    api_version: str = DEFAULT_API_VERSION

    # database
    url: str | None = None
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution

    # file
    directory: str | None = None

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "EndpointProfile":
        required = {
            "live": ("instance_url",),
            "database": ("url",),
            "file": ("directory",),
        }[self.kind]
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"{self.kind} profile requires {', '.join(missing)}")
        return self


class RunSettings(BaseModel):
    """The [settings] table of migrate.toml."""

    max_parallel_requests: int = MAX_PARALLEL_REQUESTS
    poll_timeout_ms: int = POLL_TIMEOUT_MS


class MigrationConfig(BaseModel):
    """Complete configuration from migrate.toml."""

    profiles: dict[str, EndpointProfile] = Field(default_factory=dict)
    settings: RunSettings = Field(default_factory=RunSettings)


# ============================================================================
# Resolved Endpoint Descriptors
# ============================================================================


class LiveDescriptor(BaseModel):
    """Credentials of a live endpoint."""

    name: str
    instance_url: str
    access_token: str
    api_version: str = DEFAULT_API_VERSION


class DatabaseDescriptor(BaseModel):
    """Connection URL of a database endpoint (password already substituted)."""

    name: str
    url: str


class FileDescriptor(BaseModel):
    """Directory of a CSV file endpoint."""

    name: str
    directory: Path


EndpointDescriptor = LiveDescriptor | DatabaseDescriptor | FileDescriptor
