"""Microsoft Graph API client with admission control, retry and error classification.

Every logical request flows through an explicit, ordered pipeline of stages
before reaching the network:

    admission -> retry -> correlation tag -> transport

- Admission bounds concurrent logical calls per mailbox (acquired once per
  call, not per retry attempt)
- Retry re-runs the inner stages on 429, 5xx and transport failures
- Correlation tags each physical attempt with a fresh client-request-id
- Transport attaches the bearer token and sends the request with httpx

Failures that survive the pipeline are classified into a GraphAPIError.

Usage:
    from outlook_mcp.auth import GraphAuth
    from outlook_mcp.graph.client import GraphClient

    auth = GraphAuth(client_id, tenant_id, scopes, cache_path)
    async with GraphClient(auth) as client:
        profile = await client.make_request("/me", select=["displayName", "mail"])
        async for page in client.iterate_all_pages("/me/messages", top=50):
            ...
"""

from __future__ import annotations

import asyncio
import functools
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

import httpx

from outlook_mcp.core.admission import AdmissionController
from outlook_mcp.core.errors import (
    AuthenticationError,
    ErrorKind,
    GraphAPIError,
    RequestValidationError,
    RetriesExhaustedError,
    TokenRefreshRequired,
)
from outlook_mcp.core.logging import correlation_scope, get_logger
from outlook_mcp.core.retry import RetryEngine, RetryPolicy
from outlook_mcp.graph.classifier import (
    CORRELATION_HEADER,
    classify,
    details_from_exception,
    details_from_response,
)
from outlook_mcp.graph.request import GraphRequest

if TYPE_CHECKING:
    from outlook_mcp.auth import TokenProvider
    from outlook_mcp.config_schema import AppConfig

logger = get_logger(__name__)

# Microsoft Graph API base URL
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

DEFAULT_TIMEOUT = 30.0  # seconds

Handler = Callable[[httpx.Request], Awaitable[httpx.Response]]
Stage = Callable[..., Awaitable[httpx.Response]]


def compose_pipeline(stages: Sequence[Stage], terminal: Handler) -> Handler:
    """Wrap ``terminal`` in ``stages`` so the first stage runs outermost.

    Each stage is called as ``stage(request, call_next=...)``.
    """
    handler = terminal
    for stage in reversed(stages):
        handler = functools.partial(stage, call_next=handler)
    return handler


class GraphClient:
    """Microsoft Graph API client used by every tool handler.

    Attributes:
        token_provider: Supplies bearer tokens (see outlook_mcp.auth.TokenProvider)
        base_url: Microsoft Graph API base URL
        admission: Concurrency gate shared by all calls on this client
        retry: Retry/backoff engine
    """

    BATCH_MAX_SIZE = 20  # Graph API limit per $batch POST

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = GRAPH_BASE_URL,
        retry_policy: RetryPolicy | None = None,
        admission: AdmissionController | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the Graph API client.

        Args:
            token_provider: Object exposing get_access_token()/refresh_access_token()
            base_url: Microsoft Graph API base URL (default: v1.0 endpoint)
            retry_policy: Backoff parameters (defaults to RetryPolicy())
            admission: Admission controller (a fresh one per client by default)
            timeout: Per-attempt HTTP timeout in seconds
            transport: Optional httpx transport (used by tests)
            sleep: Coroutine used for backoff waits
        """
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.admission = admission or AdmissionController()
        self.retry = RetryEngine(retry_policy, sleep=sleep)
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

        self._pipeline = compose_pipeline(
            [self._admission_stage, self._retry_stage, self._correlation_stage],
            self._send,
        )

        logger.debug(
            "GraphClient initialized",
            base_url=self.base_url,
            max_attempts=self.retry.policy.max_attempts,
            max_concurrent=self.admission.max_concurrent,
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        token_provider: TokenProvider,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GraphClient:
        """Build a client from the graph and retry sections of the app config."""
        return cls(
            token_provider,
            base_url=config.graph.base_url,
            retry_policy=config.retry.to_policy(),
            admission=AdmissionController(
                max_concurrent=config.graph.max_concurrent_requests,
                poll_interval=config.graph.admission_poll_interval_seconds,
                window_seconds=config.graph.window_seconds,
            ),
            timeout=config.graph.timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> GraphClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    async def _admission_stage(self, request: httpx.Request, call_next: Handler) -> httpx.Response:
        async with self.admission.admit():
            return await call_next(request)

    async def _retry_stage(self, request: httpx.Request, call_next: Handler) -> httpx.Response:
        return await self.retry.run(lambda: call_next(request))

    async def _correlation_stage(
        self, request: httpx.Request, call_next: Handler
    ) -> httpx.Response:
        correlation_id = str(uuid.uuid4())
        request.headers[CORRELATION_HEADER] = correlation_id
        with correlation_scope(correlation_id):
            return await call_next(request)

    async def _send(self, request: httpx.Request) -> httpx.Response:
        """Transport stage: attach the bearer token and perform one attempt."""
        token = await self._get_access_token()
        request.headers["Authorization"] = f"Bearer {token}"

        logger.debug(
            "Graph API request",
            method=request.method,
            url=str(request.url.copy_with(query=None)),
        )
        response = await self._http.send(request)
        logger.debug(
            "Graph API response",
            method=request.method,
            status_code=response.status_code,
        )
        return response

    async def _get_access_token(self) -> str:
        """Fetch a token, forcing one refresh when the provider asks for it.

        Raises:
            AuthenticationError: If no token can be obtained
        """
        try:
            try:
                return await asyncio.to_thread(self.token_provider.get_access_token)
            except TokenRefreshRequired:
                logger.info("Access token needs refresh, forcing refresh")
                await asyncio.to_thread(self.token_provider.refresh_access_token)
                return await asyncio.to_thread(self.token_provider.get_access_token)
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error("Failed to get access token", error=str(e))
            raise AuthenticationError(
                f"Cannot authenticate with Microsoft Graph: {e}. "
                "Run 'outlook-mcp login' to sign in again."
            ) from e

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    def _build_http_request(self, request: GraphRequest) -> httpx.Request:
        headers = {
            "Accept": "application/json",
            "Prefer": 'IdType="ImmutableId"',
        }
        headers.update(dict(request.headers))
        return self._http.build_request(
            request.method,
            request.url(self.base_url),
            params=request.query_params() or None,
            json=request.body,
            headers=headers,
        )

    def _log_error(self, error: GraphAPIError, request: GraphRequest) -> None:
        logger.error(
            "graph_api_error",
            method=request.method,
            path=request.path,
            **error.to_dict(),
        )

    async def execute(self, request: GraphRequest) -> dict[str, Any]:
        """Run one logical request through the pipeline.

        Args:
            request: The request descriptor

        Returns:
            Parsed JSON response body, or {} for empty responses (204)

        Raises:
            GraphAPIError: Classified failure (after retries where applicable),
                including authentication_expired when no token can be obtained
        """
        http_request = self._build_http_request(request)
        failures = (RetriesExhaustedError, *self.retry.policy.retry_on)

        try:
            response = await self._pipeline(http_request)
        except AuthenticationError as e:
            error = GraphAPIError(
                str(e),
                kind=ErrorKind.AUTHENTICATION_EXPIRED,
                correlation_id=http_request.headers.get(CORRELATION_HEADER)
                or str(uuid.uuid4()),
            )
            self._log_error(error, request)
            raise error from e
        except failures as e:
            error = classify(details_from_exception(e))
            self._log_error(error, request)
            raise error from e

        if response.is_error:
            error = classify(details_from_response(response))
            self._log_error(error, request)
            raise error

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise GraphAPIError(
                f"Microsoft Graph returned a non-JSON response for {request.path}: "
                f"{response.text[:200]}",
                kind=ErrorKind.UNKNOWN,
                status_code=response.status_code,
                correlation_id=response.request.headers.get(CORRELATION_HEADER, "unknown"),
            ) from e

    async def make_request(
        self,
        path: str,
        *,
        method: str | None = None,
        select: str | Sequence[str] | None = None,
        top: int | None = None,
        filter: str | None = None,
        orderby: str | None = None,
        expand: str | Sequence[str] | None = None,
        search: str | None = None,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Build and execute a request against ``path``.

        Query options are applied only when set. GET is used when no method
        is given.

        Example:
            messages = await client.make_request(
                "/me/mailFolders/inbox/messages",
                select="id,subject,from",
                top=10,
                orderby="receivedDateTime desc",
            )
        """
        request = GraphRequest.build(
            path,
            method=method,
            select=select,
            top=top,
            filter=filter,
            orderby=orderby,
            expand=expand,
            search=search,
            body=body,
            headers=headers,
        )
        return await self.execute(request)

    async def get_with_select(self, path: str, fields: Sequence[str]) -> dict[str, Any]:
        """GET ``path`` returning only ``fields``."""
        return await self.make_request(path, select=",".join(fields))

    async def post_with_retry(self, path: str, body: Any = None) -> dict[str, Any]:
        return await self.make_request(path, method="POST", body=body)

    async def patch_with_retry(self, path: str, body: Any = None) -> dict[str, Any]:
        return await self.make_request(path, method="PATCH", body=body)

    async def put_with_retry(self, path: str, body: Any = None) -> dict[str, Any]:
        return await self.make_request(path, method="PUT", body=body)

    async def delete_with_retry(self, path: str) -> dict[str, Any]:
        return await self.make_request(path, method="DELETE")

    async def get_user_info(self) -> dict[str, Any]:
        """Get the signed-in user's id, displayName, mail and userPrincipalName."""
        return await self.get_with_select("/me", ["id", "displayName", "mail", "userPrincipalName"])

    # ------------------------------------------------------------------
    # Batch and pagination
    # ------------------------------------------------------------------

    async def make_batch_request(self, requests: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """Execute up to 20 operations in a single $batch request.

        Each operation dict must contain ``url`` and may contain ``method``
        (GET by default), ``body`` and ``headers``. Operations are assigned
        ids "1", "2", ... in order.

        Args:
            requests: Operation dicts, at most BATCH_MAX_SIZE

        Returns:
            Sub-responses (each with 'id', 'status', 'headers', 'body'),
            in the order the operations were submitted

        Raises:
            RequestValidationError: Before any network call, if the batch is
                too large or an operation has no url
            GraphAPIError: If the batch POST itself fails (not individual ops)
        """
        if len(requests) > self.BATCH_MAX_SIZE:
            raise RequestValidationError(
                f"Batch requests are limited to {self.BATCH_MAX_SIZE} operations, "
                f"got {len(requests)}. Split the work into smaller batches.",
                correlation_id=str(uuid.uuid4()),
            )
        if not requests:
            return []

        payload = []
        for index, op in enumerate(requests, start=1):
            if not op.get("url"):
                raise RequestValidationError(
                    f"Batch operation {index} has no 'url'.",
                    correlation_id=str(uuid.uuid4()),
                )
            item: dict[str, Any] = {
                "id": str(index),
                "method": (op.get("method") or "GET").upper(),
                "url": op["url"],
            }
            headers = dict(op.get("headers") or {})
            if op.get("body") is not None:
                item["body"] = op["body"]
                headers.setdefault("Content-Type", "application/json")
            if headers:
                item["headers"] = headers
            payload.append(item)

        logger.info("batch_request_sending", operation_count=len(payload))

        response = await self.post_with_retry("/$batch", {"requests": payload})
        responses: list[dict[str, Any]] = response.get("responses", [])

        logger.info(
            "batch_request_complete",
            sent=len(payload),
            received=len(responses),
        )

        # Graph may answer out of order
        return sorted(responses, key=lambda r: int(r.get("id", 0)))

    async def iterate_all_pages(
        self,
        path: str,
        *,
        max_pages: int | None = None,
        **options: Any,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Lazily walk a paginated collection, yielding each page's items.

        Follows @odata.nextLink until the server stops returning one. The
        iterator is single-pass: to start over, call this method again.

        Args:
            path: Collection path for the first page
            max_pages: Stop after this many pages (None for no limit)
            **options: Query/method options for the first page (see make_request)

        Yields:
            The ``value`` list of each page ([] when a page has none)
        """
        response = await self.make_request(path, **options)
        pages = 1
        yield response.get("value") or []

        next_link = response.get("@odata.nextLink")
        while next_link:
            if max_pages is not None and pages >= max_pages:
                logger.debug("Pagination stopped at max_pages", max_pages=max_pages)
                return
            # nextLink already carries the query string
            response = await self.execute(GraphRequest.build(next_link))
            pages += 1
            yield response.get("value") or []
            next_link = response.get("@odata.nextLink")

        logger.debug("Pagination complete", path=path, total_pages=pages)
