"""Tests for the Microsoft Graph client.

Uses httpx.MockTransport to serve canned Graph responses.
"""

import json
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import pytest

from miroir.storage.models import CALENDAR, CONTACTS, ContactRecord, EventRecord
from miroir.sync.errors import CursorExpiredError, RemoteFetchError, RemoteWriteError
from miroir.sync.graph import GraphClient

TZ = ZoneInfo("Europe/Berlin")
START = datetime(2024, 6, 1, tzinfo=TZ)
END = datetime(2024, 7, 1, tzinfo=TZ)

NEXT_LINK = "https://graph.microsoft.com/v1.0/me/calendarView?%24skiptoken=abc"
DELTA_NEXT = "https://graph.microsoft.com/v1.0/me/contacts/delta?%24skiptoken=p2"
DELTA_LINK = "https://graph.microsoft.com/v1.0/me/contacts/delta?%24deltatoken=d1"


def graph_event(event_id: str, subject: str = "Standup", **extra) -> dict:
    """A calendarView item as Graph returns it."""
    item = {
        "id": event_id,
        "subject": subject,
        "start": {
            "dateTime": "2024-06-03T10:00:00.0000000",
            "timeZone": "Europe/Berlin",
        },
        "end": {"dateTime": "2024-06-03T11:00:00.0000000", "timeZone": "Europe/Berlin"},
        "lastModifiedDateTime": "2024-05-30T12:00:00Z",
    }
    item.update(extra)
    return item


def make_client(handler) -> GraphClient:
    """GraphClient served by a request handler."""
    return GraphClient("test-token", TZ, transport=httpx.MockTransport(handler))


class TestHeaders:
    """Tests for request headers."""

    def test_sends_token_and_preferences(self):
        """Bearer token, zone and plain-text bodies are requested."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"value": []})

        with make_client(handler) as client:
            client.calendar_view(START, END)

        assert seen[0].headers["Authorization"] == "Bearer test-token"
        assert 'outlook.timezone="Europe/Berlin"' in seen[0].headers["Prefer"]
        assert 'outlook.body-content-type="text"' in seen[0].headers["Prefer"]


class TestCalendarView:
    """Tests for calendar_view method."""

    def test_sends_window(self):
        """The window bounds and page size go in the query."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"value": []})

        with make_client(handler) as client:
            client.calendar_view(START, END)

        params = seen[0].url.params
        assert seen[0].url.path == "/v1.0/me/calendarView"
        assert params["startDateTime"] == "2024-06-01T00:00:00+02:00"
        assert params["endDateTime"] == "2024-07-01T00:00:00+02:00"
        assert params["$top"] == "100"

    def test_follows_next_links(self):
        """Every page is drained."""
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            if "skiptoken" in str(request.url):
                return httpx.Response(200, json={"value": [graph_event("e2")]})
            return httpx.Response(
                200,
                json={"value": [graph_event("e1")], "@odata.nextLink": NEXT_LINK},
            )

        with make_client(handler) as client:
            events = client.calendar_view(START, END)

        assert [e.id for e in events] == ["e1", "e2"]
        assert "skiptoken=abc" in urls[1]

    def test_failing_page_returns_nothing(self):
        """A later page failure aborts the whole fetch."""

        def handler(request: httpx.Request) -> httpx.Response:
            if "skiptoken" in str(request.url):
                return httpx.Response(
                    503, json={"error": {"message": "Service unavailable"}}
                )
            return httpx.Response(
                200,
                json={"value": [graph_event("e1")], "@odata.nextLink": NEXT_LINK},
            )

        with make_client(handler) as client:
            with pytest.raises(RemoteFetchError, match="HTTP 503"):
                client.calendar_view(START, END)

    def test_transport_error(self):
        """Network failures surface as RemoteFetchError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(RemoteFetchError, match="connection refused"):
                client.calendar_view(START, END)

    def test_invalid_json(self):
        """Undecodable bodies surface as RemoteFetchError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>oops</html>")

        with make_client(handler) as client:
            with pytest.raises(RemoteFetchError):
                client.calendar_view(START, END)

    def test_malformed_event(self):
        """Items without a start make the fetch fail."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"value": [{"id": "e1", "subject": "x"}]})

        with make_client(handler) as client:
            with pytest.raises(RemoteFetchError, match="malformed event"):
                client.calendar_view(START, END)

    def test_full_window_dispatch(self):
        """full_window() serves calendar and rejects other categories."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"value": [graph_event("e1")]})

        with make_client(handler) as client:
            assert [e.id for e in client.full_window(CALENDAR, START, END)] == ["e1"]
            with pytest.raises(RemoteFetchError):
                client.full_window(CONTACTS, START, END)


class TestContactsDelta:
    """Tests for contacts_delta method."""

    def test_initial_enumeration(self):
        """No cursor starts at /me/contacts/delta and drains to the delta link."""
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            if "skiptoken" in str(request.url):
                return httpx.Response(
                    200,
                    json={
                        "value": [
                            {"id": "c2", "displayName": "Bob"},
                            {"id": "c3", "@removed": {"reason": "deleted"}},
                        ],
                        "@odata.deltaLink": DELTA_LINK,
                    },
                )
            return httpx.Response(
                200,
                json={
                    "value": [{"id": "c1", "displayName": "Alice"}],
                    "@odata.nextLink": DELTA_NEXT,
                },
            )

        with make_client(handler) as client:
            batch = client.contacts_delta(None)

        assert urls[0] == "https://graph.microsoft.com/v1.0/me/contacts/delta"
        assert [c.id for c in batch.records] == ["c1", "c2"]
        assert batch.tombstones == ["c3"]
        assert batch.cursor == DELTA_LINK

    def test_resumes_from_cursor(self):
        """A stored cursor is requested as is."""
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, json={"value": [], "@odata.deltaLink": "next"})

        with make_client(handler) as client:
            batch = client.delta(CONTACTS, DELTA_LINK)

        assert len(urls) == 1
        assert "deltatoken=d1" in urls[0]
        assert batch.cursor == "next"
        assert batch.records == []

    def test_expired_cursor(self):
        """HTTP 410 means the cursor must be dropped."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                410, json={"error": {"message": "Sync state generation is old"}}
            )

        with make_client(handler) as client:
            with pytest.raises(CursorExpiredError, match="generation is old"):
                client.contacts_delta(DELTA_LINK)

    def test_missing_delta_link(self):
        """A chain that never yields a delta link is a failed fetch."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"value": [{"id": "c1"}]})

        with make_client(handler) as client:
            with pytest.raises(RemoteFetchError, match="delta link"):
                client.contacts_delta(None)

    def test_other_http_errors(self):
        """Errors other than 410 are plain fetch failures."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Token expired"}})

        with make_client(handler) as client:
            with pytest.raises(RemoteFetchError) as exc_info:
                client.contacts_delta(None)

        assert not isinstance(exc_info.value, CursorExpiredError)
        assert "Token expired" in str(exc_info.value)


class TestEventWrites:
    """Tests for create_event and delete_event."""

    def test_create_sends_event_and_returns_record(self):
        """The event is posted in the configured zone and parsed back."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json=graph_event("new-1", "Planning"))

        with make_client(handler) as client:
            event = client.create_event(
                "Planning",
                datetime(2024, 6, 3, 10, 0, tzinfo=TZ),
                datetime(2024, 6, 3, 11, 0, tzinfo=TZ),
                location="Room 2",
                attendees=["bob@example.com"],
            )

        assert seen[0].method == "POST"
        assert seen[0].url.path == "/v1.0/me/events"
        payload = json.loads(seen[0].content)
        assert payload["subject"] == "Planning"
        assert payload["start"] == {
            "dateTime": "2024-06-03T10:00:00",
            "timeZone": "Europe/Berlin",
        }
        assert payload["isAllDay"] is False
        assert payload["location"] == {"displayName": "Room 2"}
        assert payload["attendees"][0]["emailAddress"]["address"] == "bob@example.com"
        assert "body" not in payload
        assert isinstance(event, EventRecord)
        assert event.id == "new-1"

    def test_create_rejected(self):
        """An HTTP error becomes RemoteWriteError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"error": {"message": "Invalid subject"}}
            )

        with make_client(handler) as client:
            with pytest.raises(RemoteWriteError, match="Invalid subject"):
                client.create_event(
                    "x",
                    datetime(2024, 6, 3, 10, 0, tzinfo=TZ),
                    datetime(2024, 6, 3, 11, 0, tzinfo=TZ),
                )

    def test_delete(self):
        """Deleting addresses the event by id."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        with make_client(handler) as client:
            client.delete_event("evt-1")

        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/v1.0/me/events/evt-1"

    def test_delete_unknown_event(self):
        """A missing event is reported."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": {"message": "Not found"}})

        with make_client(handler) as client:
            with pytest.raises(RemoteWriteError, match="HTTP 404"):
                client.delete_event("evt-1")


class TestEventFromGraph:
    """Tests for EventRecord.from_graph."""

    def test_converts_to_configured_zone(self):
        """UTC timestamps are shifted into the configured zone."""
        item = graph_event(
            "e1",
            start={"dateTime": "2024-06-03T08:00:00.0000000", "timeZone": "UTC"},
            end={"dateTime": "2024-06-03T09:00:00.0000000", "timeZone": "UTC"},
        )

        event = EventRecord.from_graph(item, TZ)

        assert event.start.isoformat() == "2024-06-03T10:00:00+02:00"
        assert event.end.isoformat() == "2024-06-03T11:00:00+02:00"

    def test_optional_attributes(self):
        """Organizer, attendees, location and meeting URL are extracted."""
        item = graph_event(
            "e1",
            isOnlineMeeting=True,
            onlineMeeting={"joinUrl": "https://teams.example.com/join/1"},
            organizer={"emailAddress": {"address": "boss@example.com"}},
            attendees=[
                {"emailAddress": {"address": "a@example.com"}},
                {"emailAddress": {"name": "No address"}},
            ],
            location={"displayName": "Room 1"},
            responseStatus={"response": "accepted"},
            body={"contentType": "html", "content": "<p>Hi</p>"},
        )

        event = EventRecord.from_graph(item, TZ)

        assert event.online_meeting is True
        assert event.meeting_url == "https://teams.example.com/join/1"
        assert event.organizer == "boss@example.com"
        assert event.attendees == ["a@example.com"]
        assert event.location == "Room 1"
        assert event.response == "accepted"
        assert event.body_type == "html"

    def test_defaults(self):
        """Missing attributes fall back to neutral values."""
        event = EventRecord.from_graph(graph_event("e1"), TZ)

        assert event.response == "none"
        assert event.sensitivity == "normal"
        assert event.location is None
        assert event.attendees == []
        assert event.natural_key == ("2024-06-03", "Standup")


class TestContactFromGraph:
    """Tests for ContactRecord.from_graph."""

    def test_merges_phones_and_trims_birthday(self):
        """Phones are merged in order; birthday keeps the date only."""
        contact = ContactRecord.from_graph(
            {
                "id": "c1",
                "displayName": "Alice Martin",
                "businessPhones": ["+1 555 0100"],
                "homePhones": ["+1 555 0101"],
                "mobilePhone": "+1 555 0102",
                "emailAddresses": [{"address": "alice@example.com"}, {"name": "x"}],
                "birthday": "1990-04-12T11:59:00Z",
                "companyName": "Acme",
            }
        )

        assert contact.phones == ["+1 555 0100", "+1 555 0101", "+1 555 0102"]
        assert contact.emails == ["alice@example.com"]
        assert contact.birthday == "1990-04-12"
        assert contact.company == "Acme"
        assert contact.surname is None
