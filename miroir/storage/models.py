"""Data models for mirrored Microsoft 365 records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Category directory names under <data_dir>/<account>/
CALENDAR = "calendar"
CONTACTS = "contacts"


def parse_graph_datetime(value: dict, tz: tzinfo) -> datetime:
    """Parse a Graph ``dateTimeTimeZone`` object into an aware datetime.

    Graph sends wall-clock time without offset plus a zone name, with up to
    seven fractional digits ("2024-01-15T10:00:00.0000000"). The result is
    converted to ``tz`` so every timestamp carries the configured zone.

    Args:
        value: Dict with "dateTime" and "timeZone" keys.
        tz: Configured time zone.

    Returns:
        Timezone-aware datetime in ``tz``.

    Raises:
        ValueError: If the dateTime string is missing or malformed.
    """
    raw = (value or {}).get("dateTime")
    if not raw:
        raise ValueError("missing dateTime")

    naive = datetime.fromisoformat(raw.split(".")[0].rstrip("Z"))

    zone_name = value.get("timeZone") or ""
    if zone_name.upper() in ("UTC", "ETC/UTC"):
        source_tz: tzinfo = timezone.utc
    else:
        try:
            source_tz = ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError):
            # Windows zone names; we asked Graph for the configured zone
            source_tz = tz

    return naive.replace(tzinfo=source_tz).astimezone(tz)


@dataclass
class EventRecord:
    """A calendar event as returned by ``/me/calendarView``.

    The natural key is (start date, subject); the filename is derived
    from it, while ``id`` is the sole identity.
    """

    id: str
    subject: str
    start: datetime
    end: datetime
    last_modified: str = ""
    all_day: bool = False
    response: str = "none"
    online_meeting: bool = False
    meeting_url: str | None = None
    organizer: str | None = None
    attendees: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    location: str | None = None
    sensitivity: str = "normal"
    body: str = ""
    body_type: str = "text"

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.start.date().isoformat(), self.subject)

    @classmethod
    def from_graph(cls, data: dict, tz: tzinfo) -> "EventRecord":
        """Build an event from a Graph JSON item.

        Raises:
            KeyError: If the item has no id.
            ValueError: If start or end cannot be parsed.
        """
        online = data.get("onlineMeeting") or {}
        organizer = (data.get("organizer") or {}).get("emailAddress") or {}
        body = data.get("body") or {}

        return cls(
            id=data["id"],
            subject=data.get("subject") or "",
            start=parse_graph_datetime(data.get("start"), tz),
            end=parse_graph_datetime(data.get("end"), tz),
            last_modified=data.get("lastModifiedDateTime") or "",
            all_day=bool(data.get("isAllDay")),
            response=(data.get("responseStatus") or {}).get("response") or "none",
            online_meeting=bool(data.get("isOnlineMeeting")),
            meeting_url=online.get("joinUrl") or None,
            organizer=organizer.get("address") or None,
            attendees=[
                a["emailAddress"]["address"]
                for a in data.get("attendees") or []
                if (a.get("emailAddress") or {}).get("address")
            ],
            categories=list(data.get("categories") or []),
            location=(data.get("location") or {}).get("displayName") or None,
            sensitivity=data.get("sensitivity") or "normal",
            body=body.get("content") or "",
            body_type=(body.get("contentType") or "text").lower(),
        )


@dataclass
class ContactRecord:
    """A personal contact as returned by ``/me/contacts/delta``.

    The natural key is the display name.
    """

    id: str
    display_name: str
    last_modified: str = ""
    given_name: str | None = None
    surname: str | None = None
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    company: str | None = None
    job_title: str | None = None
    birthday: str | None = None  # YYYY-MM-DD

    @property
    def natural_key(self) -> tuple[str]:
        return (self.display_name,)

    @classmethod
    def from_graph(cls, data: dict) -> "ContactRecord":
        """Build a contact from a Graph JSON item.

        Business, home and mobile numbers are merged into ``phones``
        in that order.

        Raises:
            KeyError: If the item has no id.
        """
        phones = list(data.get("businessPhones") or [])
        phones.extend(data.get("homePhones") or [])
        if data.get("mobilePhone"):
            phones.append(data["mobilePhone"])

        birthday = data.get("birthday") or None
        if birthday:
            birthday = birthday.split("T")[0]

        return cls(
            id=data["id"],
            display_name=data.get("displayName") or "",
            last_modified=data.get("lastModifiedDateTime") or "",
            given_name=data.get("givenName") or None,
            surname=data.get("surname") or None,
            emails=[
                e["address"]
                for e in data.get("emailAddresses") or []
                if e.get("address")
            ],
            phones=phones,
            company=data.get("companyName") or None,
            job_title=data.get("jobTitle") or None,
            birthday=birthday,
        )
