"""MSAL browser sign-in and token management for Microsoft Graph API.

Key features:
- Token cache persistence (file-based, with restricted permissions)
- Silent token acquisition (from cache/refresh token)
- Forced refresh when the Graph client asks for it
- Interactive browser sign-in on a local redirect port

Usage:
    from outlook_mcp.auth.msal_auth import GraphAuth
    from outlook_mcp.config import get_config

    config = get_config()
    auth = GraphAuth(
        client_id=config.auth.client_id,
        tenant_id=config.auth.tenant_id,
        scopes=config.auth.scopes,
        token_cache_path=config.auth.token_cache_path,
    )

    # Sign in once (opens a browser)
    profile = auth.authenticate()

    # Later calls are silent
    token = auth.get_access_token()
"""

import os
import stat
import time
from pathlib import Path
from typing import Any

import msal
import requests

from outlook_mcp.core.errors import AuthenticationError, TokenRefreshRequired
from outlook_mcp.core.logging import get_logger

logger = get_logger(__name__)

# Retry configuration for MSAL network operations
MSAL_MAX_RETRIES = 3
MSAL_RETRY_DELAYS = [1.0, 2.0, 4.0]


class GraphAuth:
    """Token provider backed by an MSAL public client application.

    Attributes:
        client_id: Azure AD Application (client) ID
        tenant_id: Azure AD Directory (tenant) ID or 'common' for personal accounts
        scopes: List of Microsoft Graph API permission scopes
        token_cache_path: Path to the token cache file
        redirect_port: Local port used for the browser sign-in redirect

    Security notes:
        - Token cache file is created with mode 600 (owner read/write only)
        - Refresh tokens in the cache are sensitive and should be protected
    """

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        scopes: list[str],
        token_cache_path: str,
        redirect_port: int = 8400,
    ):
        """Initialize the Graph authentication handler.

        Raises:
            ValueError: If client_id is empty
        """
        if not client_id or not client_id.strip():
            raise ValueError(
                "client_id is required. "
                "Register an app in Azure Portal: https://portal.azure.com → "
                "Microsoft Entra ID → App registrations → New registration"
            )

        self.client_id = client_id
        self.tenant_id = tenant_id
        self.scopes = scopes
        self.token_cache_path = Path(token_cache_path)
        self.redirect_port = redirect_port
        self.cache = msal.SerializableTokenCache()

        self._load_cache()

        authority = f"https://login.microsoftonline.com/{tenant_id}"
        self.app = msal.PublicClientApplication(
            client_id=self.client_id,
            authority=authority,
            token_cache=self.cache,
        )

        logger.debug(
            "GraphAuth initialized",
            client_id=client_id[:8] + "...",  # Log partial ID for debugging
            tenant_id=tenant_id[:8] + "...",
            scopes=scopes,
        )

    @property
    def is_authenticated(self) -> bool:
        """True when the cache holds at least one account."""
        return bool(self.app.get_accounts())

    def authenticate(self) -> dict[str, Any]:
        """Sign in interactively in the browser.

        Returns:
            Profile claims of the signed-in user (name, preferred_username, ...)

        Raises:
            AuthenticationError: If sign-in fails or is cancelled
        """
        logger.info("Starting interactive browser sign-in", port=self.redirect_port)

        result = self._with_retry(
            "Interactive sign-in",
            lambda: self.app.acquire_token_interactive(
                scopes=self.scopes,
                port=self.redirect_port,
                prompt="select_account",
            ),
        )

        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            error_desc = result.get("error_description", "Authentication failed")
            logger.error("Interactive sign-in failed", error=error, description=error_desc)
            if error == "access_denied":
                raise AuthenticationError(
                    "Sign-in was cancelled or consent was declined. "
                    "Run 'outlook-mcp login' again and accept the permission request."
                )
            raise AuthenticationError(f"Authentication failed: {error_desc}")

        self._save_cache()
        claims = result.get("id_token_claims", {})
        logger.info(
            "Authentication successful",
            username=claims.get("preferred_username", "unknown"),
        )
        return claims

    def get_access_token(self) -> str:
        """Return a cached or silently refreshed access token.

        Raises:
            TokenRefreshRequired: If an account is cached but no valid token was returned
            AuthenticationError: If nobody has signed in yet
        """
        accounts = self.app.get_accounts()
        if not accounts:
            raise AuthenticationError(
                "Not authenticated with Microsoft Graph. "
                "Run 'outlook-mcp login' or call the outlook_authenticate tool first."
            )

        result = self._with_retry(
            "Silent token acquisition",
            lambda: self.app.acquire_token_silent(scopes=self.scopes, account=accounts[0]),
        )
        if result and "access_token" in result:
            self._save_cache()
            return result["access_token"]

        if result:
            logger.debug(
                "Silent acquisition failed",
                error=result.get("error"),
                description=result.get("error_description"),
            )
        raise TokenRefreshRequired("Cached access token needs refresh")

    def refresh_access_token(self) -> None:
        """Force a refresh-token redemption for the cached account.

        Raises:
            AuthenticationError: If the refresh token is no longer valid
        """
        accounts = self.app.get_accounts()
        if not accounts:
            raise AuthenticationError(
                "Not authenticated with Microsoft Graph. Run 'outlook-mcp login' first."
            )

        result = self._with_retry(
            "Forced token refresh",
            lambda: self.app.acquire_token_silent(
                scopes=self.scopes,
                account=accounts[0],
                force_refresh=True,
            ),
        )
        if not result or "access_token" not in result:
            error_desc = (result or {}).get("error_description", "refresh token rejected")
            logger.error("Token refresh failed", description=error_desc)
            raise AuthenticationError(
                f"Could not refresh the access token: {error_desc}. "
                "Run 'outlook-mcp login' to sign in again."
            )

        self._save_cache()
        logger.info("Access token refreshed")

    def _with_retry(self, operation: str, call: Any) -> Any:
        """Run an MSAL call, retrying transient network errors with fixed delays.

        Raises:
            AuthenticationError: If every attempt hits a network error
        """
        last_error: Exception | None = None

        for attempt in range(MSAL_MAX_RETRIES):
            try:
                return call()
            except requests.exceptions.RequestException as e:
                last_error = e
                if attempt < MSAL_MAX_RETRIES - 1:
                    delay = MSAL_RETRY_DELAYS[attempt]
                    logger.warning(
                        f"{operation} failed, retrying",
                        attempt=attempt + 1,
                        max_retries=MSAL_MAX_RETRIES,
                        delay=delay,
                        error=str(e),
                    )
                    time.sleep(delay)

        raise AuthenticationError(
            f"{operation} failed after {MSAL_MAX_RETRIES} attempts: {last_error}. "
            "Check your network connection and try again."
        ) from last_error

    def _load_cache(self) -> None:
        """Load the token cache from disk if it exists."""
        if self.token_cache_path.exists():
            try:
                self.cache.deserialize(self.token_cache_path.read_text())
                logger.debug("Token cache loaded", path=str(self.token_cache_path))
            except (OSError, ValueError) as e:
                logger.warning(
                    "Failed to load token cache, will re-authenticate",
                    path=str(self.token_cache_path),
                    error=str(e),
                )

    def _save_cache(self) -> None:
        """Save the token cache to disk with restricted permissions."""
        if not self.cache.has_state_changed:
            return

        try:
            self.token_cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.token_cache_path.write_text(self.cache.serialize())
            os.chmod(self.token_cache_path, stat.S_IRUSR | stat.S_IWUSR)
            logger.debug("Token cache saved", path=str(self.token_cache_path))
        except OSError as e:
            # Don't raise - token will just need to be re-acquired next time
            logger.error(
                "Failed to save token cache",
                path=str(self.token_cache_path),
                error=str(e),
            )

    def clear_cache(self) -> None:
        """Remove all cached accounts and delete the cache file (sign out)."""
        for account in self.app.get_accounts():
            self.app.remove_account(account)

        if self.token_cache_path.exists():
            try:
                self.token_cache_path.unlink()
                logger.info("Token cache cleared", path=str(self.token_cache_path))
            except OSError as e:
                logger.warning(
                    "Failed to delete token cache file",
                    path=str(self.token_cache_path),
                    error=str(e),
                )
