"""Calendar event operations for Microsoft Graph API."""

import uuid
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from outlook_mcp.core.errors import RequestValidationError
from outlook_mcp.core.logging import get_logger
from outlook_mcp.graph.helpers import build_event, build_recurrence, quote_odata_string

if TYPE_CHECKING:
    from outlook_mcp.graph.client import GraphClient

logger = get_logger(__name__)

EVENT_FIELDS = "id,subject,start,end,location,attendees,bodyPreview"


def _series(recurrence: Mapping[str, Any]) -> dict[str, Any]:
    try:
        return build_recurrence(recurrence["pattern"], recurrence["range"])
    except (KeyError, TypeError) as e:
        raise RequestValidationError(
            f"Invalid recurrence ({e}). Expected 'pattern' (with 'type') and "
            "'range' (with 'type' and 'startDate') objects.",
            correlation_id=str(uuid.uuid4()),
        ) from e


class CalendarManager:
    """Lists and creates events on the user's calendars.

    Attributes:
        client: GraphClient instance for API calls
    """

    def __init__(self, client: "GraphClient"):
        self.client = client

    async def list_events(
        self,
        start_date_time: str | None = None,
        end_date_time: str | None = None,
        top: int = 10,
        calendar_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """List events, optionally restricted to a time window.

        The window applies only when both bounds are given.

        Args:
            start_date_time: Window start (ISO 8601)
            end_date_time: Window end (ISO 8601)
            top: Number of events to return
            calendar_id: Calendar ID (default calendar when None)

        Returns:
            List of event dictionaries ordered by start time
        """
        endpoint = f"/me/calendars/{calendar_id}/events" if calendar_id else "/me/events"

        filter_query = None
        if start_date_time and end_date_time:
            filter_query = (
                f"start/dateTime ge {quote_odata_string(start_date_time)} "
                f"and end/dateTime le {quote_odata_string(end_date_time)}"
            )

        response = await self.client.make_request(
            endpoint,
            select=EVENT_FIELDS,
            top=top,
            orderby="start/dateTime",
            filter=filter_query,
        )
        return response.get("value", [])

    async def create_event(
        self,
        subject: str,
        start: str | Mapping[str, str],
        end: str | Mapping[str, str],
        body: str | None = None,
        location: str | None = None,
        attendees: Sequence[str] | None = None,
        calendar_id: str | None = None,
        recurrence: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create an event and return the created resource.

        Args:
            recurrence: Optional {"pattern": {...}, "range": {...}} making the
                event a series (see build_recurrence)
        """
        endpoint = f"/me/calendars/{calendar_id}/events" if calendar_id else "/me/events"
        event = build_event(
            subject,
            start,
            end,
            body=body,
            location=location,
            attendees=attendees,
            recurrence=_series(recurrence) if recurrence else None,
        )
        created = await self.client.post_with_retry(endpoint, event)
        logger.info("Event created", event_id=created.get("id"), attendees=len(attendees or []))
        return created
