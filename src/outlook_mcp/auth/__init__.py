"""Authentication module for Microsoft Graph API.

GraphClient only needs an object satisfying TokenProvider; GraphAuth is the
MSAL-backed implementation used by the server and CLI.

Usage:
    from outlook_mcp.auth import GraphAuth

    auth = GraphAuth(
        client_id="your-client-id",
        tenant_id="your-tenant-id",
        scopes=["Mail.ReadWrite", "User.Read"],
        token_cache_path="data/token_cache.json",
    )

    token = auth.get_access_token()
"""

from typing import Protocol

from outlook_mcp.auth.msal_auth import GraphAuth


class TokenProvider(Protocol):
    """Supplies bearer tokens for Graph requests.

    get_access_token() may raise TokenRefreshRequired; the caller then
    calls refresh_access_token() once and asks again.
    """

    def get_access_token(self) -> str: ...

    def refresh_access_token(self) -> None: ...


__all__ = ["GraphAuth", "TokenProvider"]
