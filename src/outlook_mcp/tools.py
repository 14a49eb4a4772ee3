"""Tool handlers exposed to the agent.

Each handler takes a ToolContext plus the tool's arguments, calls the Graph
access layer, and returns a text result. Failures of the access layer are
turned into an error text that carries the error kind and correlation id,
so the agent can tell the user what to do and operators can find the
matching server-side log entry.
"""

from __future__ import annotations

import asyncio
import functools
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from outlook_mcp.core.errors import GraphAPIError, OutlookMCPError
from outlook_mcp.core.logging import get_logger
from outlook_mcp.graph.helpers import parse_email_address, parse_email_name

if TYPE_CHECKING:
    from outlook_mcp.auth import GraphAuth
    from outlook_mcp.graph.calendar import CalendarManager
    from outlook_mcp.graph.client import GraphClient
    from outlook_mcp.graph.mail import MailManager

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ToolContext:
    """Collaborators shared by every tool call."""

    auth: GraphAuth
    client: GraphClient
    mail: MailManager
    calendar: CalendarManager


def _json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def format_tool_error(action: str, error: OutlookMCPError) -> str:
    """Render an access-layer failure as tool output."""
    if isinstance(error, GraphAPIError):
        return (
            f"Failed to {action}: {error.message}\n"
            f"[kind={error.kind}, correlation_id={error.correlation_id}, "
            f"timestamp={error.timestamp}]"
        )
    return f"Failed to {action}: {error}"


F = TypeVar("F", bound=Callable[..., Awaitable[str]])


def tool_handler(action: str) -> Callable[[F], F]:
    """Decorator turning OutlookMCPError into an error text result."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> str:
            try:
                return await func(*args, **kwargs)
            except OutlookMCPError as e:
                logger.warning(
                    "Tool call failed",
                    tool=func.__name__,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return format_tool_error(action, e)

        return wrapper  # type: ignore[return-value]

    return decorator


def _summarize_message(message: dict[str, Any]) -> dict[str, Any]:
    sender = message.get("from")
    return {
        "id": message.get("id"),
        "subject": message.get("subject"),
        "from": parse_email_address(sender) if sender else "Unknown",
        "fromName": parse_email_name(sender) or "Unknown",
        "receivedDateTime": message.get("receivedDateTime"),
        "preview": message.get("bodyPreview"),
        "isRead": message.get("isRead"),
    }


def _summarize_event(event: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": event.get("id"),
        "subject": event.get("subject"),
        "start": event.get("start"),
        "end": event.get("end"),
        "location": (event.get("location") or {}).get("displayName") or "No location",
        "attendees": [parse_email_address(a) for a in event.get("attendees") or []],
        "preview": event.get("bodyPreview"),
    }


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@tool_handler("authenticate")
async def authenticate(ctx: ToolContext) -> str:
    """Sign in to Microsoft Outlook in the browser."""
    await asyncio.to_thread(ctx.auth.authenticate)
    user = await ctx.client.get_user_info()
    mail = user.get("mail") or user.get("userPrincipalName")
    return f"Successfully authenticated as {user.get('displayName')} ({mail})"


# ---------------------------------------------------------------------------
# Mail
# ---------------------------------------------------------------------------


@tool_handler("list emails")
async def list_emails(
    ctx: ToolContext,
    folder: str = "inbox",
    limit: int = 10,
    filter: str | None = None,
) -> str:
    messages = await ctx.mail.list_messages(folder, top=limit, filter_query=filter)
    emails = [_summarize_message(m) for m in messages]
    return _json({"emails": emails, "count": len(emails)})


@tool_handler("get email")
async def get_email(ctx: ToolContext, message_id: str) -> str:
    message = await ctx.mail.get_message(message_id)
    return _json(message)


@tool_handler("search emails")
async def search_emails(
    ctx: ToolContext,
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
    messages = await ctx.mail.search_messages(
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
    return _json({"emails": messages, "count": len(messages)})


@tool_handler("send email")
async def send_email(
    ctx: ToolContext,
    to: list[str],
    subject: str,
    body: str,
    body_type: str = "text",
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
) -> str:
    await ctx.mail.send_mail(to, subject, body, body_type=body_type, cc=cc, bcc=bcc)
    return f"Email sent successfully to {', '.join(to)}"


@tool_handler("create draft")
async def create_draft(
    ctx: ToolContext,
    to: list[str],
    subject: str,
    body: str = "",
    body_type: str = "text",
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    importance: str = "normal",
) -> str:
    draft = await ctx.mail.create_draft(
        to,
        subject,
        body,
        body_type=body_type,
        cc=cc,
        bcc=bcc,
        importance=importance,
    )
    return f'Draft "{subject}" created. Draft ID: {draft.get("id")}'


@tool_handler("reply to email")
async def reply_to_email(
    ctx: ToolContext,
    message_id: str,
    body: str = "",
    comment: str | None = None,
) -> str:
    await ctx.mail.reply(message_id, comment or body)
    return f"Reply sent for message {message_id}"


@tool_handler("reply all")
async def reply_all(
    ctx: ToolContext,
    message_id: str,
    body: str = "",
    comment: str | None = None,
) -> str:
    await ctx.mail.reply_all(message_id, comment or body)
    return f"Reply-all sent for message {message_id}"


@tool_handler("forward email")
async def forward_email(
    ctx: ToolContext,
    message_id: str,
    to: list[str],
    body: str = "",
    comment: str | None = None,
) -> str:
    await ctx.mail.forward(message_id, to, comment or body)
    return f"Message {message_id} forwarded to {', '.join(to)}"


@tool_handler("delete email")
async def delete_email(ctx: ToolContext, message_id: str, permanent_delete: bool = False) -> str:
    await ctx.mail.delete(message_id, permanent=permanent_delete)
    if permanent_delete:
        return f"Message {message_id} permanently deleted"
    return f"Message {message_id} moved to Deleted Items"


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------


@tool_handler("list events")
async def list_events(
    ctx: ToolContext,
    start_date_time: str | None = None,
    end_date_time: str | None = None,
    limit: int = 10,
    calendar: str | None = None,
) -> str:
    events = await ctx.calendar.list_events(
        start_date_time,
        end_date_time,
        top=limit,
        calendar_id=calendar,
    )
    summaries = [_summarize_event(e) for e in events]
    return _json({"events": summaries, "count": len(summaries)})


@tool_handler("create event")
async def create_event(
    ctx: ToolContext,
    subject: str,
    start: dict[str, str],
    end: dict[str, str],
    body: str = "",
    location: str = "",
    attendees: list[str] | None = None,
    recurrence: dict[str, Any] | None = None,
) -> str:
    created = await ctx.calendar.create_event(
        subject,
        start,
        end,
        body=body or None,
        location=location or None,
        attendees=attendees,
        recurrence=recurrence,
    )
    return f'Event "{subject}" created successfully. Event ID: {created.get("id")}'
