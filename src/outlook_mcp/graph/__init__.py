"""Microsoft Graph API access layer.

Provides the request pipeline every tool goes through:
- GraphClient with admission control, retry/backoff and error classification
- Batch ($batch) and pagination (@odata.nextLink) helpers
- Mail and calendar managers built on the client

Usage:
    from outlook_mcp.auth import GraphAuth
    from outlook_mcp.graph import CalendarManager, GraphClient, MailManager

    client = GraphClient(auth)
    mail = MailManager(client)
    calendar = CalendarManager(client)
"""

from outlook_mcp.graph.calendar import CalendarManager
from outlook_mcp.graph.classifier import classify
from outlook_mcp.graph.client import GraphClient
from outlook_mcp.graph.mail import MailManager
from outlook_mcp.graph.request import GraphRequest

__all__ = [
    "CalendarManager",
    "GraphClient",
    "GraphRequest",
    "MailManager",
    "classify",
]
