"""Microsoft Graph client for mirror synchronization.

Wraps the Graph REST API to provide the two read operations the sync
engine needs:

- full_window(): a complete snapshot of a bounded time range
  (``/me/calendarView``), for categories without a change feed.
- delta(): the changes since a cursor, including tombstones
  (``/me/contacts/delta``), for unbounded collections.

Both drain every result page before returning. Any failing page aborts
the whole call with RemoteFetchError; callers never see partial results
or a cursor for a half-read page chain.

create_event() and delete_event() back the explicit ``cal create`` and
``cal delete`` commands; a sync pass never writes upstream.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Protocol
from urllib.parse import quote

import httpx

from miroir.storage.models import CALENDAR, CONTACTS, ContactRecord, EventRecord
from miroir.sync.errors import (
    CursorExpiredError,
    RemoteFetchError,
    RemoteWriteError,
)

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

# Seconds per request; the engine itself never retries
DEFAULT_TIMEOUT = 30.0

# Page size requested from calendarView (Graph's default is 10)
CALENDAR_PAGE_SIZE = 100


@dataclass
class DeltaBatch:
    """Result of a fully drained delta query.

    Attributes:
        records: New or changed records.
        tombstones: Ids of records deleted upstream.
        cursor: Delta link to resume from on the next pass.
    """

    records: list = field(default_factory=list)
    tombstones: list[str] = field(default_factory=list)
    cursor: str = ""


class RemoteSource(Protocol):
    """Read operations the sync engine needs from the remote service."""

    def full_window(self, category: str, start: datetime, end: datetime) -> list:
        """Complete snapshot of every record in [start, end)."""
        ...

    def delta(self, category: str, cursor: str | None) -> DeltaBatch:
        """Changes since ``cursor`` (everything when cursor is empty)."""
        ...


def _zone_name(tz: tzinfo) -> str:
    """IANA name of a tzinfo, for the outlook.timezone preference."""
    return getattr(tz, "key", None) or "UTC"


def _graph_datetime(value: datetime, tz: tzinfo) -> dict:
    """Graph ``dateTimeTimeZone`` object for a datetime, as wall time in tz."""
    local = value.astimezone(tz) if value.tzinfo else value
    return {
        "dateTime": local.replace(tzinfo=None).isoformat(timespec="seconds"),
        "timeZone": _zone_name(tz),
    }


class GraphClient:
    """Client for the Microsoft Graph calendar and contact endpoints.

    Handles pagination automatically and converts JSON items into
    EventRecord / ContactRecord objects in the configured time zone.

    Example:
        token = get_access_token("work", account_config)
        with GraphClient(token, tz=ZoneInfo("Europe/Berlin")) as client:
            events = client.calendar_view(start, end)
            batch = client.contacts_delta(None)
    """

    def __init__(
        self,
        token: str,
        tz: tzinfo,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the Graph client.

        Args:
            token: Bearer access token for the account.
            tz: Time zone for event timestamps.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._tz = tz
        self._client = httpx.Client(
            base_url=GRAPH_BASE_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "Prefer": (
                    f'outlook.timezone="{_zone_name(tz)}", '
                    'outlook.body-content-type="text"'
                ),
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "GraphClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _get_page(self, url: str, params: dict | None = None) -> dict:
        """Fetch and decode one result page.

        Raises:
            CursorExpiredError: On HTTP 410 (delta token no longer valid).
            RemoteFetchError: On any transport, HTTP or decoding failure.
        """
        try:
            response = self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise RemoteFetchError(f"request failed: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            if response.status_code == 410:
                raise CursorExpiredError(f"delta cursor expired: {message}")
            raise RemoteFetchError(
                f"API error (HTTP {response.status_code}): {message}"
            )

        try:
            page = response.json()
        except ValueError as e:
            raise RemoteFetchError(f"failed to parse response: {e}") from e

        if not isinstance(page, dict) or not isinstance(page.get("value", []), list):
            raise RemoteFetchError("unexpected response shape")

        return page

    def calendar_view(self, start: datetime, end: datetime) -> list[EventRecord]:
        """List every event occurring in a time range.

        Recurring events are expanded into their occurrences by Graph.

        Args:
            start: Window start (timezone-aware).
            end: Window end (timezone-aware).

        Returns:
            All events in the window, in the order Graph returned them.

        Raises:
            RemoteFetchError: If any page fails or holds a malformed event.
        """
        url: str | None = "/me/calendarView"
        params: dict | None = {
            "startDateTime": start.isoformat(),
            "endDateTime": end.isoformat(),
            "$top": CALENDAR_PAGE_SIZE,
        }
        events: list[EventRecord] = []
        pages = 0

        while url:
            page = self._get_page(url, params)
            pages += 1
            for item in page.get("value", []):
                try:
                    events.append(EventRecord.from_graph(item, self._tz))
                except (KeyError, TypeError, ValueError) as e:
                    raise RemoteFetchError(f"malformed event in response: {e}") from e

            # nextLink already carries the query
            url = page.get("@odata.nextLink")
            params = None

        logger.debug("calendarView returned %d events in %d pages", len(events), pages)
        return events

    def contacts_delta(self, cursor: str | None) -> DeltaBatch:
        """Get contacts changed since a delta cursor.

        An empty cursor enumerates every contact and seeds a new cursor.

        Args:
            cursor: Delta link from the previous pass, or None.

        Returns:
            DeltaBatch with changed contacts, tombstoned ids and new cursor.

        Raises:
            CursorExpiredError: If Graph rejects the cursor (HTTP 410).
            RemoteFetchError: If any page fails or the chain never yields
                a delta link.
        """
        url: str | None = cursor or "/me/contacts/delta"
        batch = DeltaBatch()

        while url:
            page = self._get_page(url)
            for item in page.get("value", []):
                if "@removed" in item:
                    if item.get("id"):
                        batch.tombstones.append(item["id"])
                    continue
                try:
                    batch.records.append(ContactRecord.from_graph(item))
                except (KeyError, TypeError) as e:
                    raise RemoteFetchError(
                        f"malformed contact in response: {e}"
                    ) from e

            delta_link = page.get("@odata.deltaLink")
            if delta_link:
                batch.cursor = delta_link
                break
            url = page.get("@odata.nextLink")

        if not batch.cursor:
            raise RemoteFetchError("delta query ended without a delta link")

        logger.debug(
            "contacts delta returned %d changes and %d removals",
            len(batch.records),
            len(batch.tombstones),
        )
        return batch

    def _send(
        self, method: str, url: str, payload: dict | None = None
    ) -> httpx.Response:
        """Send one write request.

        Raises:
            RemoteWriteError: On a transport failure or HTTP error.
        """
        try:
            response = self._client.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise RemoteWriteError(f"request failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteWriteError(
                f"API error (HTTP {response.status_code}): {_error_message(response)}"
            )
        return response

    def create_event(
        self,
        subject: str,
        start: datetime,
        end: datetime,
        *,
        location: str | None = None,
        body: str | None = None,
        attendees: Sequence[str] = (),
        all_day: bool = False,
    ) -> EventRecord:
        """Create an event in the account's default calendar.

        Naive datetimes are taken as wall time in the configured zone.
        For all-day events start and end must be midnights.

        Returns:
            The event as Graph stored it, ready to be mirrored.

        Raises:
            RemoteWriteError: If Graph rejects the event or the reply
                cannot be read.
        """
        payload: dict = {
            "subject": subject,
            "start": _graph_datetime(start, self._tz),
            "end": _graph_datetime(end, self._tz),
            "isAllDay": all_day,
        }
        if location:
            payload["location"] = {"displayName": location}
        if body:
            payload["body"] = {"contentType": "text", "content": body}
        if attendees:
            payload["attendees"] = [
                {"emailAddress": {"address": address}, "type": "required"}
                for address in attendees
            ]

        response = self._send("POST", "/me/events", payload)
        try:
            event = EventRecord.from_graph(response.json(), self._tz)
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteWriteError(f"unexpected reply to event creation: {e}") from e

        logger.debug("Created event %s", event.id)
        return event

    def delete_event(self, event_id: str) -> None:
        """Delete an event upstream.

        Raises:
            RemoteWriteError: If Graph refuses (including unknown ids).
        """
        self._send("DELETE", f"/me/events/{quote(event_id, safe='')}")
        logger.debug("Deleted event %s", event_id)

    def full_window(self, category: str, start: datetime, end: datetime) -> list:
        """RemoteSource full-window query, dispatched by category."""
        if category == CALENDAR:
            return self.calendar_view(start, end)
        raise RemoteFetchError(f"no full-window query for category '{category}'")

    def delta(self, category: str, cursor: str | None) -> DeltaBatch:
        """RemoteSource delta query, dispatched by category."""
        if category == CONTACTS:
            return self.contacts_delta(cursor)
        raise RemoteFetchError(f"no delta query for category '{category}'")


def _error_message(response: httpx.Response) -> str:
    """Extract the Graph error message from a failed response."""
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return response.reason_phrase or "unknown error"
