"""Pytest fixtures and configuration for Outlook MCP tests.

Provides common fixtures for configuration, token providers and a
GraphClient wired to an httpx.MockTransport.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

from outlook_mcp.config import reset_config
from outlook_mcp.config_schema import AppConfig
from outlook_mcp.core.admission import AdmissionController
from outlook_mcp.core.errors import TokenRefreshRequired
from outlook_mcp.core.retry import RetryPolicy
from outlook_mcp.graph.client import GraphClient


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove environment variables that override config values."""
    for name in ("AZURE_CLIENT_ID", "AZURE_TENANT_ID", "OUTLOOK_MCP_CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

auth:
  client_id: "test-client-id"
  tenant_id: "test-tenant-id"

retry:
  max_attempts: 4
  initial_delay_seconds: 0.5

graph:
  max_concurrent_requests: 4
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "auth": {
            "client_id": "test-client-id",
            "tenant_id": "test-tenant-id",
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


# ---------------------------------------------------------------------------
# Graph fakes
# ---------------------------------------------------------------------------


class FakeTokenProvider:
    """Token provider that hands out numbered tokens.

    Set ``needs_refresh`` to make the next get_access_token() raise
    TokenRefreshRequired once.
    """

    def __init__(self, needs_refresh: bool = False):
        self.needs_refresh = needs_refresh
        self.refresh_calls = 0
        self.token = "token-0"

    def get_access_token(self) -> str:
        if self.needs_refresh:
            raise TokenRefreshRequired("token expired")
        return self.token

    def refresh_access_token(self) -> None:
        self.refresh_calls += 1
        self.needs_refresh = False
        self.token = f"token-{self.refresh_calls}"


class RecordingSleep:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def token_provider() -> FakeTokenProvider:
    """Return a token provider that never needs a refresh."""
    return FakeTokenProvider()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Return a sleep function that records delays without waiting."""
    return RecordingSleep()


@pytest.fixture
def make_client(
    token_provider: FakeTokenProvider, recording_sleep: RecordingSleep
) -> Callable[..., GraphClient]:
    """Return a factory building a GraphClient around a MockTransport handler.

    Usage:
        client = make_client(handler, max_attempts=2)
    """

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        max_attempts: int = 3,
        admission: AdmissionController | None = None,
        provider: Any = None,
    ) -> GraphClient:
        return GraphClient(
            provider or token_provider,
            retry_policy=RetryPolicy(max_attempts=max_attempts),
            admission=admission,
            transport=httpx.MockTransport(handler),
            sleep=recording_sleep,
        )

    return factory
