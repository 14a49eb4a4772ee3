"""Tests for tools.py handlers and server tool registration.

Managers and the client are mocked; the tests check the text results the
agent sees, including classified error output.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from outlook_mcp import tools
from outlook_mcp.core.errors import (
    AuthenticationError,
    ErrorKind,
    GraphAPIError,
    RequestValidationError,
)

CID = "0b6a5c1e-aaaa-bbbb-cccc-ddddeeeeffff"


@pytest.fixture
def ctx() -> tools.ToolContext:
    """Return a ToolContext with mocked collaborators."""
    auth = MagicMock()
    client = MagicMock()
    client.get_user_info = AsyncMock(
        return_value={"displayName": "Ada Lovelace", "mail": "ada@example.com"}
    )
    mail = MagicMock()
    for name in (
        "list_messages",
        "get_message",
        "search_messages",
        "send_mail",
        "create_draft",
        "reply",
        "reply_all",
        "forward",
        "delete",
    ):
        setattr(mail, name, AsyncMock())
    calendar = MagicMock()
    calendar.list_events = AsyncMock()
    calendar.create_event = AsyncMock()
    return tools.ToolContext(auth=auth, client=client, mail=mail, calendar=calendar)


# ---------------------------------------------------------------------------
# Error formatting
# ---------------------------------------------------------------------------


class TestFormatToolError:
    """Tests for format_tool_error() and the tool_handler decorator."""

    def test_graph_error_carries_kind_and_correlation(self) -> None:
        error = GraphAPIError(
            "Resource not found.",
            kind=ErrorKind.RESOURCE_NOT_FOUND,
            status_code=404,
            correlation_id=CID,
            timestamp="2024-05-01T00:00:00+00:00",
        )

        text = tools.format_tool_error("get email", error)

        assert text.startswith("Failed to get email: Resource not found.")
        assert "kind=resource_not_found" in text
        assert f"correlation_id={CID}" in text
        assert "timestamp=2024-05-01T00:00:00+00:00" in text

    def test_plain_error(self) -> None:
        text = tools.format_tool_error("list emails", AuthenticationError("Not signed in"))
        assert text == "Failed to list emails: Not signed in"

    @pytest.mark.asyncio
    async def test_handler_turns_error_into_text(self, ctx: tools.ToolContext) -> None:
        ctx.mail.get_message.side_effect = GraphAPIError(
            "Authentication failed. Please re-authenticate.",
            kind=ErrorKind.AUTHENTICATION_EXPIRED,
            correlation_id=CID,
        )

        text = await tools.get_email(ctx, "m1")

        assert "Failed to get email" in text
        assert "authentication_expired" in text
        assert CID in text

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, ctx: tools.ToolContext) -> None:
        """Only access-layer errors are rendered; bugs still raise."""
        ctx.mail.get_message.side_effect = KeyError("bug")

        with pytest.raises(KeyError):
            await tools.get_email(ctx, "m1")

    def test_wraps_preserve_name(self) -> None:
        assert tools.list_emails.__name__ == "list_emails"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_reports_signed_in_user(self, ctx: tools.ToolContext) -> None:
        text = await tools.authenticate(ctx)

        ctx.auth.authenticate.assert_called_once_with()
        assert text == "Successfully authenticated as Ada Lovelace (ada@example.com)"


class TestMailTools:
    """Tests for the mail tool handlers."""

    @pytest.mark.asyncio
    async def test_list_emails_summarizes(self, ctx: tools.ToolContext) -> None:
        ctx.mail.list_messages.return_value = [
            {
                "id": "m1",
                "subject": "Hello",
                "from": {"emailAddress": {"address": "bob@example.com", "name": "Bob"}},
                "receivedDateTime": "2024-05-01T10:00:00Z",
                "bodyPreview": "Hi there",
                "isRead": False,
            },
            {"id": "m2", "subject": "No sender"},
        ]

        payload = json.loads(await tools.list_emails(ctx, folder="inbox", limit=2))

        ctx.mail.list_messages.assert_awaited_once_with("inbox", top=2, filter_query=None)
        assert payload["count"] == 2
        assert payload["emails"][0]["from"] == "bob@example.com"
        assert payload["emails"][0]["fromName"] == "Bob"
        assert payload["emails"][1]["from"] == "Unknown"

    @pytest.mark.asyncio
    async def test_search_emails(self, ctx: tools.ToolContext) -> None:
        ctx.mail.search_messages.return_value = [{"id": "m1"}]

        payload = json.loads(await tools.search_emails(ctx, query="budget", limit=5))

        assert payload == {"emails": [{"id": "m1"}], "count": 1}
        assert ctx.mail.search_messages.await_args.kwargs["query"] == "budget"

    @pytest.mark.asyncio
    async def test_send_email(self, ctx: tools.ToolContext) -> None:
        text = await tools.send_email(ctx, ["a@example.com", "b@example.com"], "Hi", "Body")

        assert text == "Email sent successfully to a@example.com, b@example.com"
        ctx.mail.send_mail.assert_awaited_once_with(
            ["a@example.com", "b@example.com"],
            "Hi",
            "Body",
            body_type="text",
            cc=None,
            bcc=None,
        )

    @pytest.mark.asyncio
    async def test_create_draft(self, ctx: tools.ToolContext) -> None:
        ctx.mail.create_draft.return_value = {"id": "d1"}

        text = await tools.create_draft(ctx, ["a@example.com"], "Plan")

        assert text == 'Draft "Plan" created. Draft ID: d1'

    @pytest.mark.asyncio
    async def test_reply_prefers_comment(self, ctx: tools.ToolContext) -> None:
        await tools.reply_to_email(ctx, "m1", body="body text", comment="comment text")
        ctx.mail.reply.assert_awaited_once_with("m1", "comment text")

    @pytest.mark.asyncio
    async def test_reply_all(self, ctx: tools.ToolContext) -> None:
        text = await tools.reply_all(ctx, "m1", body="Thanks")

        ctx.mail.reply_all.assert_awaited_once_with("m1", "Thanks")
        assert text == "Reply-all sent for message m1"

    @pytest.mark.asyncio
    async def test_forward(self, ctx: tools.ToolContext) -> None:
        text = await tools.forward_email(ctx, "m1", ["c@example.com"], body="FYI")

        ctx.mail.forward.assert_awaited_once_with("m1", ["c@example.com"], "FYI")
        assert text == "Message m1 forwarded to c@example.com"

    @pytest.mark.asyncio
    async def test_delete_soft_and_permanent(self, ctx: tools.ToolContext) -> None:
        assert await tools.delete_email(ctx, "m1") == "Message m1 moved to Deleted Items"
        assert (
            await tools.delete_email(ctx, "m2", permanent_delete=True)
            == "Message m2 permanently deleted"
        )
        ctx.mail.delete.assert_any_await("m2", permanent=True)

    @pytest.mark.asyncio
    async def test_validation_error_text(self, ctx: tools.ToolContext) -> None:
        ctx.mail.send_mail.side_effect = RequestValidationError("Bad request", correlation_id=CID)

        text = await tools.send_email(ctx, ["a@example.com"], "Hi", "Body")

        assert text.startswith("Failed to send email: Bad request")
        assert "kind=validation_error" in text


class TestCalendarTools:
    """Tests for the calendar tool handlers."""

    @pytest.mark.asyncio
    async def test_list_events(self, ctx: tools.ToolContext) -> None:
        ctx.calendar.list_events.return_value = [
            {
                "id": "e1",
                "subject": "Standup",
                "start": {"dateTime": "2024-05-01T09:00:00", "timeZone": "UTC"},
                "end": {"dateTime": "2024-05-01T09:15:00", "timeZone": "UTC"},
                "attendees": [{"emailAddress": {"address": "a@example.com"}}],
            }
        ]

        payload = json.loads(await tools.list_events(ctx, limit=1, calendar="cal-1"))

        ctx.calendar.list_events.assert_awaited_once_with(None, None, top=1, calendar_id="cal-1")
        event = payload["events"][0]
        assert event["location"] == "No location"
        assert event["attendees"] == ["a@example.com"]

    @pytest.mark.asyncio
    async def test_create_event(self, ctx: tools.ToolContext) -> None:
        ctx.calendar.create_event.return_value = {"id": "e42"}
        start = {"dateTime": "2024-05-01T12:00:00", "timeZone": "UTC"}
        end = {"dateTime": "2024-05-01T13:00:00", "timeZone": "UTC"}

        text = await tools.create_event(ctx, "Lunch", start, end)

        assert text == 'Event "Lunch" created successfully. Event ID: e42'
        ctx.calendar.create_event.assert_awaited_once_with(
            "Lunch", start, end, body=None, location=None, attendees=None, recurrence=None
        )


# ---------------------------------------------------------------------------
# Server registration
# ---------------------------------------------------------------------------


class TestServerTools:
    """Tests for the FastMCP tool registry."""

    @pytest.mark.asyncio
    async def test_all_tools_registered(self) -> None:
        from outlook_mcp.server import mcp

        names = {tool.name for tool in await mcp.list_tools()}

        assert names == {
            "outlook_authenticate",
            "outlook_list_emails",
            "outlook_get_email",
            "outlook_search_emails",
            "outlook_send_email",
            "outlook_create_draft",
            "outlook_reply_to_email",
            "outlook_reply_all",
            "outlook_forward_email",
            "outlook_delete_email",
            "outlook_list_events",
            "outlook_create_event",
        }
