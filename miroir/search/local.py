"""Listing and search over the local mirror.

Builds on list_local_records() from the sync engine: headers give the
structured fields, and the query is a case-insensitive substring match
against the whole file, so body text is searchable too.
"""

import logging
from datetime import datetime, tzinfo
from pathlib import Path

from miroir.storage.models import CALENDAR, CONTACTS
from miroir.sync.engine import list_local_records

from .models import ContactSummary, EventSummary

logger = logging.getLogger(__name__)


def _matches(path: str, query: str | None) -> bool:
    """Check whether a file's text contains the query (case-insensitive)."""
    if not query:
        return True
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False
    return query.lower() in text.lower()


def _as_datetime(value: object, tz: tzinfo) -> datetime | None:
    """Parse a header timestamp; naive values are taken to be in ``tz``."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def list_events(
    data_dir: Path,
    accounts: list[str],
    start: datetime,
    end: datetime,
    tz: tzinfo,
    query: str | None = None,
) -> list[EventSummary]:
    """List mirrored events starting inside a range.

    Args:
        data_dir: Root of the mirror.
        accounts: Accounts to include.
        start: Range start (inclusive, timezone-aware).
        end: Range end (inclusive, timezone-aware).
        tz: Zone assumed for timestamps written without an offset.
        query: Optional substring to match against the whole file.

    Returns:
        Matching events sorted by start time.
    """
    events = []

    for account in accounts:
        for header in list_local_records(data_dir, account, CALENDAR):
            event_start = _as_datetime(header.get("start"), tz)
            if event_start is None:
                logger.debug("Skipping event without start: %s", header["path"])
                continue

            if event_start < start or event_start > end:
                continue

            if not _matches(header["path"], query):
                continue

            events.append(
                EventSummary(
                    id=str(header["id"]),
                    account=account,
                    file=header["path"],
                    start=event_start,
                    end=_as_datetime(header.get("end"), tz),
                    subject=str(header.get("subject") or ""),
                    location=header.get("location"),
                    all_day=bool(header.get("all_day")),
                )
            )

    events.sort(key=lambda e: e.start)
    return events


def search_contacts(
    data_dir: Path,
    accounts: list[str],
    query: str,
) -> list[ContactSummary]:
    """Find mirrored contacts whose file contains the query.

    Args:
        data_dir: Root of the mirror.
        accounts: Accounts to include.
        query: Substring to look for (name, email, phone, company...).

    Returns:
        Matching contacts, grouped by account in the given order and
        sorted by filename within an account.
    """
    contacts = []

    for account in accounts:
        for header in list_local_records(data_dir, account, CONTACTS):
            if not _matches(header["path"], query):
                continue

            contacts.append(
                ContactSummary(
                    id=str(header["id"]),
                    account=account,
                    file=header["path"],
                    display_name=str(header.get("display_name") or ""),
                    emails=list(header.get("emails") or []),
                    phones=[str(p) for p in header.get("phones") or []],
                    company=header.get("company"),
                )
            )

    return contacts
