"""Payload builders and small parsers for common Graph API objects.

Builders only emit optional keys that were actually provided, so the
resulting dicts can be POSTed or PATCHed as-is.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

DEFAULT_TIME_ZONE = "UTC"


def _body(content: str, body_type: str = "text") -> dict[str, str]:
    return {
        "contentType": "HTML" if body_type.lower() == "html" else "Text",
        "content": content,
    }


def recipients(addresses: str | Iterable[str]) -> list[dict[str, Any]]:
    """Turn one address or a list of addresses into Graph recipient objects."""
    if isinstance(addresses, str):
        addresses = [addresses]
    return [{"emailAddress": {"address": address}} for address in addresses]


def _date_time_zone(value: str | Mapping[str, str], time_zone: str = DEFAULT_TIME_ZONE) -> dict:
    """Accept either an ISO string or a {dateTime, timeZone} mapping."""
    if isinstance(value, Mapping):
        return {
            "dateTime": value["dateTime"],
            "timeZone": value.get("timeZone") or time_zone,
        }
    return {"dateTime": value, "timeZone": time_zone}


# ---------------------------------------------------------------------------
# Mail
# ---------------------------------------------------------------------------


def build_message(
    to: str | Iterable[str],
    subject: str,
    body: str = "",
    body_type: str = "text",
    cc: Iterable[str] | None = None,
    bcc: Iterable[str] | None = None,
    importance: str | None = None,
    attachments: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a Graph message resource."""
    message: dict[str, Any] = {
        "subject": subject,
        "body": _body(body, body_type),
        "toRecipients": recipients(to),
    }

    cc = list(cc or [])
    if cc:
        message["ccRecipients"] = recipients(cc)
    bcc = list(bcc or [])
    if bcc:
        message["bccRecipients"] = recipients(bcc)
    if importance:
        message["importance"] = importance  # low, normal, high
    if attachments:
        message["attachments"] = attachments

    return message


def build_reply(
    comment: str,
    reply_all: bool = False,
    cc: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Build the body for /reply or /replyAll."""
    reply: dict[str, Any] = {"comment": comment}

    if reply_all:
        reply["message"] = {}
        cc = list(cc or [])
        if cc:
            reply["message"]["ccRecipients"] = recipients(cc)

    return reply


def parse_email_address(email_object: Any) -> str:
    """Address from a Graph recipient object (or the string itself)."""
    if isinstance(email_object, str):
        return email_object
    if isinstance(email_object, Mapping):
        address = (email_object.get("emailAddress") or {}).get("address")
        if address:
            return address
    return "unknown"


def parse_email_name(email_object: Any) -> str | None:
    """Display name from a Graph recipient object, if any."""
    if isinstance(email_object, Mapping):
        return (email_object.get("emailAddress") or {}).get("name") or None
    return None


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------


def build_event(
    subject: str,
    start: str | Mapping[str, str],
    end: str | Mapping[str, str],
    body: str | None = None,
    body_type: str = "text",
    location: str | None = None,
    attendees: Iterable[str] | None = None,
    is_all_day: bool = False,
    recurrence: dict[str, Any] | None = None,
    is_online_meeting: bool = False,
    online_meeting_provider: str = "teamsForBusiness",
) -> dict[str, Any]:
    """Build a Graph event resource. Times default to UTC when no zone is given."""
    event: dict[str, Any] = {
        "subject": subject,
        "start": _date_time_zone(start),
        "end": _date_time_zone(end),
    }

    if body:
        event["body"] = _body(body, body_type)
    if location:
        event["location"] = {"displayName": location}
    attendees = list(attendees or [])
    if attendees:
        event["attendees"] = [
            {"emailAddress": {"address": address}, "type": "required"} for address in attendees
        ]
    if is_all_day:
        event["isAllDay"] = True
    if recurrence:
        event["recurrence"] = recurrence
    if is_online_meeting:
        event["isOnlineMeeting"] = True
        event["onlineMeetingProvider"] = online_meeting_provider

    return event


def build_recurrence(pattern: Mapping[str, Any], range_: Mapping[str, Any]) -> dict[str, Any]:
    """Build a patternedRecurrence.

    Args:
        pattern: {type, interval?, daysOfWeek?, dayOfMonth?}; type is one of
            daily, weekly, absoluteMonthly, relativeMonthly, absoluteYearly,
            relativeYearly
        range_: {type, startDate, endDate?, numberOfOccurrences?}; type is one
            of endDate, noEnd, numbered
    """
    recurrence: dict[str, Any] = {
        "pattern": {
            "type": pattern["type"],
            "interval": pattern.get("interval") or 1,
        },
        "range": {
            "type": range_["type"],
            "startDate": range_["startDate"],
        },
    }

    if pattern.get("daysOfWeek"):
        recurrence["pattern"]["daysOfWeek"] = list(pattern["daysOfWeek"])
    if pattern.get("dayOfMonth"):
        recurrence["pattern"]["dayOfMonth"] = pattern["dayOfMonth"]

    if range_["type"] == "endDate":
        recurrence["range"]["endDate"] = range_["endDate"]
    elif range_["type"] == "numbered":
        recurrence["range"]["numberOfOccurrences"] = range_["numberOfOccurrences"]

    return recurrence


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

_COMPARISON_OPERATORS = {
    "$gt": "gt",
    "$gte": "ge",
    "$lt": "lt",
    "$lte": "le",
}


def quote_odata_string(value: Any) -> str:
    """Render a value as a single-quoted OData string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def _odata_literal(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def build_odata_filter(filters: Mapping[str, Any] | None) -> str | None:
    """Build an OData $filter from a mapping of field -> condition.

    Scalars become equality tests; dicts use operators ``$gt``, ``$gte``,
    ``$lt``, ``$lte``, ``$ne``, ``$contains`` and ``$startswith``. None
    values are skipped. Conditions are joined with ``and``.

    Example:
        build_odata_filter({"isRead": False, "receivedDateTime": {"$gte": since}})
        # "isRead eq false and receivedDateTime ge 2024-01-01T00:00:00+00:00"
    """
    if not filters:
        return None

    clauses: list[str] = []
    for key, value in filters.items():
        if value is None:
            continue

        if isinstance(value, bool):
            clauses.append(f"{key} eq {str(value).lower()}")
        elif isinstance(value, str):
            clauses.append(f"{key} eq {quote_odata_string(value)}")
        elif isinstance(value, (datetime, date)):
            clauses.append(f"{key} eq {value.isoformat()}")
        elif isinstance(value, Mapping):
            for operator, operand in value.items():
                if operator in _COMPARISON_OPERATORS:
                    op = _COMPARISON_OPERATORS[operator]
                    clauses.append(f"{key} {op} {_odata_literal(operand)}")
                elif operator == "$ne":
                    clauses.append(f"{key} ne {quote_odata_string(operand)}")
                elif operator == "$contains":
                    clauses.append(f"contains({key}, {quote_odata_string(operand)})")
                elif operator == "$startswith":
                    clauses.append(f"startswith({key}, {quote_odata_string(operand)})")
        else:
            clauses.append(f"{key} eq {value}")

    return " and ".join(clauses) or None

