"""Pydantic configuration schema for the Outlook MCP server.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from outlook_mcp.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from outlook_mcp.core.retry import RetryPolicy

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class AuthConfig(BaseModel):
    """Azure AD authentication configuration."""

    client_id: str = Field(description="Azure AD Application (client) ID")
    tenant_id: str = Field(
        default="common",
        description="Azure AD Directory (tenant) ID or 'common' for personal accounts",
    )
    scopes: list[str] = Field(
        default=[
            "Mail.Read",
            "Mail.ReadWrite",
            "Mail.Send",
            "Calendars.Read",
            "Calendars.ReadWrite",
            "Contacts.Read",
            "Contacts.ReadWrite",
            "Tasks.Read",
            "Tasks.ReadWrite",
            "User.Read",
        ],
        description="Microsoft Graph API permission scopes",
    )
    token_cache_path: str = Field(
        default="data/token_cache.json",
        description="Path to MSAL token cache file",
    )
    redirect_port: int = Field(
        default=8400,
        ge=1024,
        le=65535,
        description="Local port for the browser sign-in redirect (http://localhost:<port>)",
    )

    @field_validator("token_cache_path")
    @classmethod
    def validate_token_cache_path(cls, v: str) -> str:
        """Ensure token cache path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Token cache path cannot be empty")
        if ".." in v:
            raise ValueError("Token cache path cannot contain '..' (path traversal)")
        return v


class RetryConfig(BaseModel):
    """Backoff settings for transient Graph failures (429, 5xx, network errors)."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts per request, including the first",
    )
    initial_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Delay before the first retry",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Factor applied to the delay after each retry",
    )
    max_delay_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=300.0,
        description="Ceiling for the computed delay",
    )
    jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Random fraction of the delay added to each wait (0 disables)",
    )

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RetryConfig":
        """max_delay_seconds must not be below initial_delay_seconds."""
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"initial_delay_seconds ({self.initial_delay_seconds})"
            )
        return self

    def to_policy(self) -> RetryPolicy:
        """Build the RetryPolicy used by the retry engine."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay_seconds,
            backoff_multiplier=self.backoff_multiplier,
            max_delay=self.max_delay_seconds,
            jitter=self.jitter,
        )


class GraphConfig(BaseModel):
    """Microsoft Graph endpoint and admission control settings."""

    base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph API base URL",
    )
    max_concurrent_requests: int = Field(
        default=4,
        ge=1,
        le=16,
        description="Concurrent requests allowed per mailbox",
    )
    admission_poll_interval_seconds: float = Field(
        default=0.1,
        gt=0.0,
        le=5.0,
        description="How often a waiting request re-checks for a free slot",
    )
    window_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Sliding window used for request accounting",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=300.0,
        description="HTTP timeout per attempt",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an https URL without a trailing slash."""
        if not v.startswith("https://"):
            raise ValueError("Graph base_url must start with https://")
        return v.rstrip("/")


class LoggingConfig(BaseModel):
    """Structured logging settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=True,
        description="Emit JSON lines (False for human-readable console output)",
    )


class AppConfig(BaseModel):
    """Root configuration model."""

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version",
    )
    auth: AuthConfig
    retry: RetryConfig = Field(default_factory=RetryConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
