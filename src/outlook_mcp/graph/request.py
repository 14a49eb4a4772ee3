"""Request descriptors for Microsoft Graph calls.

A GraphRequest captures everything about one logical call: the resource
path, the OData query shape and the HTTP method/body. It is immutable and
built fresh per call.
"""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from outlook_mcp.core.errors import RequestValidationError

SUPPORTED_METHODS = frozenset({"GET", "POST", "PATCH", "PUT", "DELETE"})


def _join_fields(value: str | Sequence[str] | None) -> str | None:
    """Render a select/expand value given as a string or a list of fields."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    joined = ",".join(field.strip() for field in value if field and field.strip())
    return joined or None


@dataclass(frozen=True, slots=True)
class GraphRequest:
    """One logical Graph API request.

    Attributes:
        path: Resource path ("/me/messages") or absolute URL (an @odata.nextLink)
        method: HTTP method, GET when unspecified
        select: Fields for $select
        top: Page size for $top
        filter: OData $filter expression
        orderby: OData $orderby expression
        expand: Navigation properties for $expand
        search: Free-text $search expression
        body: JSON body for POST/PATCH/PUT
        headers: Extra request headers
    """

    path: str
    method: str = "GET"
    select: str | tuple[str, ...] | None = None
    top: int | None = None
    filter: str | None = None
    orderby: str | None = None
    expand: str | tuple[str, ...] | None = None
    search: str | None = None
    body: Any = None
    headers: tuple[tuple[str, str], ...] = ()

    @classmethod
    def build(
        cls,
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
    ) -> "GraphRequest":
        """Create a request, normalizing the method and list-valued options.

        Raises:
            RequestValidationError: If the path is empty or the method is unsupported
        """
        if not path or not path.strip():
            raise RequestValidationError(
                "Graph request path cannot be empty.",
                correlation_id=str(uuid.uuid4()),
            )

        verb = (method or "GET").upper()
        if verb not in SUPPORTED_METHODS:
            raise RequestValidationError(
                f"Unsupported HTTP method '{method}'. "
                f"Use one of: {', '.join(sorted(SUPPORTED_METHODS))}.",
                correlation_id=str(uuid.uuid4()),
            )

        return cls(
            path=path,
            method=verb,
            select=select if isinstance(select, str) or select is None else tuple(select),
            top=top,
            filter=filter,
            orderby=orderby,
            expand=expand if isinstance(expand, str) or expand is None else tuple(expand),
            search=search,
            body=None if verb == "DELETE" else body,
            headers=tuple((headers or {}).items()),
        )

    def query_params(self) -> dict[str, Any]:
        """OData query parameters for the fields that are set, and only those."""
        params: dict[str, Any] = {}

        select = _join_fields(self.select)
        if select:
            params["$select"] = select
        if self.top is not None:
            params["$top"] = self.top
        if self.filter:
            params["$filter"] = self.filter
        if self.orderby:
            params["$orderby"] = self.orderby
        expand = _join_fields(self.expand)
        if expand:
            params["$expand"] = expand
        if self.search:
            params["$search"] = self.search

        return params

    def url(self, base_url: str) -> str:
        """Full URL for this request against ``base_url``."""
        if self.path.startswith(("http://", "https://")):
            return self.path  # Already a full URL (e.g., @odata.nextLink)
        path = self.path if self.path.startswith("/") else "/" + self.path
        return base_url.rstrip("/") + path
