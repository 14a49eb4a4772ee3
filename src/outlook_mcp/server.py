"""MCP server exposing the Outlook tools over stdio.

The lifespan builds one GraphClient per server process, so every tool call
shares the same admission state (the per-mailbox concurrency ceiling).

Usage:
    python -m outlook_mcp serve
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from outlook_mcp import tools
from outlook_mcp.auth import GraphAuth
from outlook_mcp.config import get_config
from outlook_mcp.core.logging import get_logger
from outlook_mcp.graph.calendar import CalendarManager
from outlook_mcp.graph.client import GraphClient
from outlook_mcp.graph.mail import MailManager

logger = get_logger(__name__)


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[tools.ToolContext]:
    """Create the auth provider and Graph client on startup, close them on shutdown."""
    config = get_config()
    auth = GraphAuth(
        client_id=config.auth.client_id,
        tenant_id=config.auth.tenant_id,
        scopes=config.auth.scopes,
        token_cache_path=config.auth.token_cache_path,
        redirect_port=config.auth.redirect_port,
    )
    client = GraphClient.from_config(config, auth)

    logger.info("Outlook MCP server starting", authenticated=auth.is_authenticated)
    try:
        yield tools.ToolContext(
            auth=auth,
            client=client,
            mail=MailManager(client),
            calendar=CalendarManager(client),
        )
    finally:
        await client.aclose()
        logger.info("Outlook MCP server stopped")


mcp = FastMCP("outlook-mcp", lifespan=app_lifespan)


def _tools(ctx: Context) -> tools.ToolContext:
    return ctx.request_context.lifespan_context


@mcp.tool(name="outlook_authenticate")
async def outlook_authenticate(ctx: Context) -> str:
    """Authenticate with Microsoft Outlook using OAuth 2.0 (opens a browser)."""
    return await tools.authenticate(_tools(ctx))


@mcp.tool(name="outlook_list_emails")
async def outlook_list_emails(
    ctx: Context,
    folder: str = "inbox",
    limit: int = 10,
    filter: str | None = None,
) -> str:
    """List emails from the Outlook inbox or a specified folder (optional OData filter)."""
    return await tools.list_emails(_tools(ctx), folder=folder, limit=limit, filter=filter)


@mcp.tool(name="outlook_get_email")
async def outlook_get_email(ctx: Context, message_id: str) -> str:
    """Get detailed information about a specific email."""
    return await tools.get_email(_tools(ctx), message_id)


@mcp.tool(name="outlook_search_emails")
async def outlook_search_emails(
    ctx: Context,
    query: str | None = None,
    subject: str | None = None,
    sender: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    folders: list[str] | None = None,
    limit: int = 100,
    include_body: bool = True,
    order_by: str = "receivedDateTime desc",
) -> str:
    """Search emails across all folders by free text, subject, sender or date range (max 1000)."""
    return await tools.search_emails(
        _tools(ctx),
        query=query,
        subject=subject,
        sender=sender,
        start_date=start_date,
        end_date=end_date,
        folders=folders,
        limit=limit,
        include_body=include_body,
        order_by=order_by,
    )


@mcp.tool(name="outlook_send_email")
async def outlook_send_email(
    ctx: Context,
    to: list[str],
    subject: str,
    body: str,
    body_type: str = "text",
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
) -> str:
    """Send an email through Outlook. body_type is 'text' or 'html'."""
    return await tools.send_email(
        _tools(ctx), to, subject, body, body_type=body_type, cc=cc, bcc=bcc
    )


@mcp.tool(name="outlook_create_draft")
async def outlook_create_draft(
    ctx: Context,
    to: list[str],
    subject: str,
    body: str = "",
    body_type: str = "text",
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    importance: str = "normal",
) -> str:
    """Create an email draft without sending. importance is low, normal or high."""
    return await tools.create_draft(
        _tools(ctx),
        to,
        subject,
        body,
        body_type=body_type,
        cc=cc,
        bcc=bcc,
        importance=importance,
    )


@mcp.tool(name="outlook_reply_to_email")
async def outlook_reply_to_email(
    ctx: Context,
    message_id: str,
    body: str = "",
    comment: str | None = None,
) -> str:
    """Reply to an existing email."""
    return await tools.reply_to_email(_tools(ctx), message_id, body=body, comment=comment)


@mcp.tool(name="outlook_reply_all")
async def outlook_reply_all(
    ctx: Context,
    message_id: str,
    body: str = "",
    comment: str | None = None,
) -> str:
    """Reply to all recipients of an existing email."""
    return await tools.reply_all(_tools(ctx), message_id, body=body, comment=comment)


@mcp.tool(name="outlook_forward_email")
async def outlook_forward_email(
    ctx: Context,
    message_id: str,
    to: list[str],
    body: str = "",
    comment: str | None = None,
) -> str:
    """Forward an existing email to new recipients."""
    return await tools.forward_email(_tools(ctx), message_id, to, body=body, comment=comment)


@mcp.tool(name="outlook_delete_email")
async def outlook_delete_email(
    ctx: Context,
    message_id: str,
    permanent_delete: bool = False,
) -> str:
    """Delete an email (move to Deleted Items, or permanently delete)."""
    return await tools.delete_email(_tools(ctx), message_id, permanent_delete=permanent_delete)


@mcp.tool(name="outlook_list_events")
async def outlook_list_events(
    ctx: Context,
    start_date_time: str | None = None,
    end_date_time: str | None = None,
    limit: int = 10,
    calendar: str | None = None,
) -> str:
    """List calendar events, optionally within an ISO 8601 time window."""
    return await tools.list_events(
        _tools(ctx),
        start_date_time=start_date_time,
        end_date_time=end_date_time,
        limit=limit,
        calendar=calendar,
    )


@mcp.tool(name="outlook_create_event")
async def outlook_create_event(
    ctx: Context,
    subject: str,
    start: dict[str, str],
    end: dict[str, str],
    body: str = "",
    location: str = "",
    attendees: list[str] | None = None,
    recurrence: dict[str, Any] | None = None,
) -> str:
    """Create a calendar event. start/end are {dateTime, timeZone} objects.

    recurrence makes the event a series: {"pattern": {"type": "weekly",
    "interval": 1, "daysOfWeek": ["monday"]}, "range": {"type": "endDate",
    "startDate": "2024-06-03", "endDate": "2024-12-30"}}. Range type may also
    be "noEnd" or "numbered" (with numberOfOccurrences).
    """
    return await tools.create_event(
        _tools(ctx),
        subject,
        start,
        end,
        body=body,
        location=location,
        attendees=attendees,
        recurrence=recurrence,
    )


def run(**kwargs: Any) -> None:
    """Run the server on stdio."""
    mcp.run(**kwargs)
