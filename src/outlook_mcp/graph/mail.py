"""Email message operations for Microsoft Graph API.

This module provides the mail operations exposed as MCP tools:
- Listing messages in a folder
- Fetching a single message
- Searching across folders (free text or subject/sender/date filters)
- Sending, drafting, replying, forwarding and deleting messages

Usage:
    from outlook_mcp.graph.client import GraphClient
    from outlook_mcp.graph.mail import MailManager

    mail = MailManager(client)
    inbox = await mail.list_messages("inbox", top=10)
    await mail.send_mail(["someone@example.com"], "Hello", "Body text")
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from outlook_mcp.core.logging import get_logger
from outlook_mcp.graph.helpers import (
    build_message,
    build_odata_filter,
    build_reply,
    recipients,
)

if TYPE_CHECKING:
    from outlook_mcp.graph.client import GraphClient

logger = get_logger(__name__)

# Fields returned by list/search calls
SUMMARY_MESSAGE_FIELDS = "id,subject,from,receivedDateTime,bodyPreview,isRead"

# Fields returned when a single message is fetched
DETAIL_MESSAGE_FIELDS = (
    "id,subject,from,toRecipients,ccRecipients,bccRecipients,receivedDateTime,"
    "sentDateTime,body,bodyPreview,importance,isRead,hasAttachments,conversationId,webLink"
)

SEARCH_MAX_RESULTS = 1000
GRAPH_MAX_PAGE_SIZE = 50

# Graph folder ids are case-sensitive; map friendly names to well-known names
WELL_KNOWN_FOLDERS = {
    "inbox": "inbox",
    "sent": "sentitems",
    "sentitems": "sentitems",
    "drafts": "drafts",
    "deleted": "deleteditems",
    "deleteditems": "deleteditems",
    "junk": "junkemail",
    "junkemail": "junkemail",
    "archive": "archive",
    "outbox": "outbox",
}


def folder_endpoint(folder: str) -> str:
    """Messages endpoint for a folder name or id."""
    folder_id = WELL_KNOWN_FOLDERS.get(folder.lower().replace(" ", ""), folder)
    return f"/me/mailFolders/{folder_id}/messages"


class MailManager:
    """Manages email message operations via Microsoft Graph API.

    Attributes:
        client: GraphClient instance for API calls
    """

    def __init__(self, client: "GraphClient"):
        self.client = client

    async def list_messages(
        self,
        folder: str = "inbox",
        top: int = 10,
        filter_query: str | None = None,
        select: str = SUMMARY_MESSAGE_FIELDS,
        order_by: str = "receivedDateTime desc",
    ) -> list[dict[str, Any]]:
        """List the newest messages in a folder.

        Args:
            folder: Folder name or ID (e.g., "inbox", "sentitems", or a folder ID)
            top: Number of messages to return
            filter_query: OData filter query (e.g., "isRead eq false")
            select: Fields to select
            order_by: Sort order

        Returns:
            List of message dictionaries
        """
        response = await self.client.make_request(
            folder_endpoint(folder),
            select=select,
            top=top,
            orderby=order_by,
            filter=filter_query,
        )
        return response.get("value", [])

    async def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch a single message with body and recipients."""
        return await self.client.make_request(
            f"/me/messages/{message_id}",
            select=DETAIL_MESSAGE_FIELDS,
        )

    async def search_messages(
        self,
        query: str | None = None,
        subject: str | None = None,
        sender: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        folders: Sequence[str] | None = None,
        limit: int = 100,
        include_body: bool = True,
        order_by: str = "receivedDateTime desc",
    ) -> list[dict[str, Any]]:
        """Search messages across the mailbox or specific folders.

        Free-text ``query`` uses $search, which Graph does not allow together
        with $orderby or $filter; in that case the structured filters are
        ignored and results come back in relevance order.

        Args:
            query: Free-text search across message content
            subject: Subject must contain this text
            sender: Sender address
            start_date: Received on or after (ISO 8601)
            end_date: Received on or before (ISO 8601)
            folders: Folders to search (all messages when empty)
            limit: Maximum number of results (capped at 1000)
            include_body: Include the full body in each result
            order_by: Sort order when not using free-text search

        Returns:
            List of message dictionaries, at most ``limit`` long
        """
        limit = max(1, min(limit, SEARCH_MAX_RESULTS))
        select = SUMMARY_MESSAGE_FIELDS + ",toRecipients,ccRecipients,importance,hasAttachments"
        if include_body:
            select += ",body"

        options: dict[str, Any] = {"select": select, "top": min(limit, GRAPH_MAX_PAGE_SIZE)}
        if query:
            phrase = query.replace("\\", "\\\\").replace('"', '\\"')
            options["search"] = f'"{phrase}"'
            if subject or sender or start_date or end_date:
                logger.info("Structured filters ignored for free-text search", query=query)
        else:
            conditions: dict[str, Any] = {
                "subject": {"$contains": subject} if subject else None,
                "from/emailAddress/address": sender,
                "receivedDateTime": {
                    key: value
                    for key, value in (("$gte", start_date), ("$lte", end_date))
                    if value
                }
                or None,
            }
            filter_query = build_odata_filter(conditions)
            if filter_query:
                options["filter"] = filter_query
            options["orderby"] = order_by

        endpoints = [folder_endpoint(f) for f in folders] if folders else ["/me/messages"]

        results: list[dict[str, Any]] = []
        for endpoint in endpoints:
            async for page in self.client.iterate_all_pages(endpoint, **options):
                results.extend(page)
                if len(results) >= limit:
                    break
            if len(results) >= limit:
                break

        logger.info(
            "Message search complete",
            folders=len(endpoints),
            results=min(len(results), limit),
        )
        return results[:limit]

    async def send_mail(
        self,
        to: Sequence[str],
        subject: str,
        body: str,
        body_type: str = "text",
        cc: Sequence[str] | None = None,
        bcc: Sequence[str] | None = None,
        save_to_sent_items: bool = True,
    ) -> None:
        """Send a new message."""
        message = build_message(to, subject, body, body_type=body_type, cc=cc, bcc=bcc)
        await self.client.post_with_retry(
            "/me/sendMail",
            {"message": message, "saveToSentItems": save_to_sent_items},
        )
        logger.info("Message sent", recipients=len(to))

    async def create_draft(
        self,
        to: Sequence[str],
        subject: str,
        body: str = "",
        body_type: str = "text",
        cc: Sequence[str] | None = None,
        bcc: Sequence[str] | None = None,
        importance: str = "normal",
    ) -> dict[str, Any]:
        """Create a draft in the Drafts folder and return it."""
        message = build_message(
            to,
            subject,
            body,
            body_type=body_type,
            cc=cc,
            bcc=bcc,
            importance=importance,
        )
        return await self.client.post_with_retry("/me/messages", message)

    async def reply(self, message_id: str, comment: str, reply_all: bool = False) -> None:
        """Reply (or reply all) to a message."""
        action = "replyAll" if reply_all else "reply"
        await self.client.post_with_retry(
            f"/me/messages/{message_id}/{action}",
            build_reply(comment, reply_all=reply_all),
        )

    async def reply_all(self, message_id: str, comment: str) -> None:
        """Reply to the sender and every recipient of a message."""
        await self.reply(message_id, comment, reply_all=True)

    async def forward(self, message_id: str, to: Sequence[str], comment: str = "") -> None:
        """Forward a message to new recipients."""
        await self.client.post_with_retry(
            f"/me/messages/{message_id}/forward",
            {"comment": comment, "toRecipients": recipients(to)},
        )

    async def delete(self, message_id: str, permanent: bool = False) -> None:
        """Delete a message.

        A soft delete moves the message to Deleted Items; a permanent delete
        removes it.
        """
        if permanent:
            await self.client.delete_with_retry(f"/me/messages/{message_id}")
        else:
            await self.client.post_with_retry(
                f"/me/messages/{message_id}/move",
                {"destinationId": "deleteditems"},
            )
        logger.info("Message deleted", permanent=permanent)
