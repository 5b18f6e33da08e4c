"""Configuration model for the gofile-dav server.

The configuration is assembled once at startup (by the CLI or by the caller)
and stays fixed for the lifetime of the process.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4914


class GofileDavConfig(BaseModel):
    """Startup configuration snapshot."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    root_id: str | None = Field(default=None, description="Root folder id or code")
    api_token: str | None = Field(default=None, description="Account API token")
    password: str | None = Field(
        default=None, description="Plaintext password for protected folders"
    )
    host: str = Field(default=DEFAULT_HOST, description="Interface to bind")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    bypass: bool = Field(default=False, description="Download through the bypass service")
    read_write: bool = Field(default=False, description="Allow mutations")

    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    token_ttl: int = Field(default=21600, ge=0, description="Token validity in seconds")
    max_concurrency: int = Field(default=8, ge=1)
    prefetch_depth: int = Field(default=0, ge=0)
    parent_lookup_limit: int = Field(default=256, ge=1)
    bridge_timeout: float = Field(
        default=300.0, gt=0, description="Seconds a WebDAV request waits on the loop"
    )

    @model_validator(mode="after")
    def _require_root_or_token(self) -> "GofileDavConfig":
        if not self.root_id and not self.api_token:
            raise ValueError("either root_id or api_token is required")
        return self

    @property
    def mode(self) -> Literal["read-only", "read-write"]:
        return "read-write" if self.read_write else "read-only"
