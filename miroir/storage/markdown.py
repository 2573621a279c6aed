"""Markdown storage for mirrored records.

Each record is one Markdown file with a YAML header:

    ---
    id: AAMkAG...
    account: work
    subject: Team sync
    ...
    ---

    # Team sync

    Body text.

The header is the only place identity lives (``id``); the filename is a
readable label derived from the record's natural key and may change
whenever that key changes upstream.

Files are written atomically: first to a hidden temporary file in the
same directory, then moved into place with os.replace(). A reader (or a
crash) never sees a truncated record.
"""

import html
import os
import re
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import frontmatter
import yaml

from miroir.storage.models import CALENDAR, CONTACTS, ContactRecord, EventRecord
from miroir.sync.errors import IdentityCorruptionError

FILE_SUFFIX = ".md"
SLUG_MAX_LENGTH = 60

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_len: int = SLUG_MAX_LENGTH) -> str:
    """Turn free text into a filename-safe slug.

    Lowercases, replaces every run of characters outside [a-z0-9] with a
    single dash, trims dashes and caps the length.

    Args:
        text: Text to slugify (e.g. an event subject).
        max_len: Maximum slug length.

    Returns:
        The slug, possibly empty.
    """
    slug = _NON_ALNUM.sub("-", text.lower()).strip("-")
    return slug[:max_len].rstrip("-")


def unique_filename(base: str, is_free: Callable[[str], bool]) -> str:
    """Pick the first free name among base.md, base-2.md, base-3.md, ...

    Args:
        base: Base name without suffix.
        is_free: Predicate telling whether a candidate filename may be used.

    Returns:
        The chosen filename (with suffix).
    """
    candidate = f"{base}{FILE_SUFFIX}"
    counter = 2
    while not is_free(candidate):
        candidate = f"{base}-{counter}{FILE_SUFFIX}"
        counter += 1
    return candidate


def html_to_markdown(content: str) -> str:
    """Convert a simple HTML body to Markdown.

    Handles paragraphs, line breaks, links, bold and italic; every other
    tag is dropped and entities are decoded.
    """
    md = re.sub(r"(?is)<(head|style|script)[^>]*>.*?</\1>", "", content)
    md = re.sub(r"(?i)<br[^>]*>", "\n", md)
    md = re.sub(r"(?i)</p>", "\n\n", md)
    md = re.sub(r"(?i)<p[^>]*>", "", md)
    md = re.sub(
        r"""(?is)<a[^>]*href=["']([^"']*)["'][^>]*>(.*?)</a>""", r"[\2](\1)", md
    )
    md = re.sub(r"(?is)<(strong|b)>(.*?)</\1>", r"**\2**", md)
    md = re.sub(r"(?is)<(em|i)>(.*?)</\1>", r"*\2*", md)
    md = re.sub(r"<[^>]*>", "", md)
    md = html.unescape(md).replace("\xa0", " ")
    # Collapse the blank-line runs left behind by removed markup
    md = re.sub(r"\n[ \t]*\n(\s*\n)+", "\n\n", md)
    return md.strip()


def format_document(header: dict, title: str, body: str) -> bytes:
    """Render header, title line and body into file bytes.

    Keys keep their insertion order; absent optional attributes must
    already be left out of ``header``.
    """
    content = f"# {title}"
    if body.strip():
        content += f"\n\n{body.strip()}"

    post = frontmatter.Post(content, **header)
    text = frontmatter.dumps(post, sort_keys=False) + "\n"
    return text.encode("utf-8")


def decode_header(path: Path) -> dict:
    """Read the YAML header of a record file.

    Args:
        path: Path to a Markdown record file.

    Returns:
        Header as a dict.

    Raises:
        IdentityCorruptionError: If the file cannot be read or has no header.
    """
    try:
        post = frontmatter.load(path)
    except (OSError, UnicodeDecodeError, ValueError, yaml.YAMLError) as e:
        raise IdentityCorruptionError(f"{path}: unreadable header ({e})")

    if not post.metadata:
        raise IdentityCorruptionError(f"{path}: no header")

    return dict(post.metadata)


def read_record_id(path: Path) -> str:
    """Read just the ``id`` of a record file.

    Raises:
        IdentityCorruptionError: If the header is unreadable or has no
            non-empty string ``id``.
    """
    header = decode_header(path)
    record_id = header.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise IdentityCorruptionError(f"{path}: header has no id")
    return record_id


def write_atomic(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` so the change appears all at once.

    The data goes to a hidden temporary file in the target directory, is
    fsynced, and is then renamed over the destination.

    Raises:
        OSError: If writing or renaming fails (the temp file is removed).
    """
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class RecordCodec(Protocol):
    """Maps one category of records to files."""

    category: str

    def base_name(self, record) -> str:
        """Filename (without suffix) derived from the natural key."""
        ...

    def encode(self, record, account: str) -> bytes:
        """Complete file content for a record."""
        ...


class EventCodec:
    """Codec for calendar events."""

    category = CALENDAR

    def base_name(self, event: EventRecord) -> str:
        day, subject = event.natural_key
        return f"{day}-{slugify(subject) or 'untitled'}"

    def header(self, event: EventRecord, account: str) -> dict:
        header = {
            "id": event.id,
            "account": account,
            "subject": event.subject,
            "start": event.start.isoformat(),
            "end": event.end.isoformat(),
            "all_day": event.all_day,
            "response": event.response,
            "online_meeting": event.online_meeting,
        }
        if event.meeting_url:
            header["meeting_url"] = event.meeting_url
        if event.organizer:
            header["organizer"] = event.organizer
        if event.attendees:
            header["attendees"] = list(event.attendees)
        if event.categories:
            header["categories"] = list(event.categories)
        if event.location:
            header["location"] = event.location
        header["sensitivity"] = event.sensitivity
        header["last_modified"] = event.last_modified
        return header

    def encode(self, event: EventRecord, account: str) -> bytes:
        if event.body_type == "html":
            body = html_to_markdown(event.body)
        else:
            body = event.body.replace("\r\n", "\n")
        return format_document(self.header(event, account), event.subject, body)


class ContactCodec:
    """Codec for personal contacts."""

    category = CONTACTS

    def base_name(self, contact: ContactRecord) -> str:
        return slugify(contact.display_name) or "unnamed"

    def header(self, contact: ContactRecord, account: str) -> dict:
        header = {
            "id": contact.id,
            "account": account,
            "display_name": contact.display_name,
        }
        optional = {
            "given_name": contact.given_name,
            "surname": contact.surname,
            "emails": list(contact.emails),
            "phones": list(contact.phones),
            "company": contact.company,
            "job_title": contact.job_title,
            "birthday": contact.birthday,
        }
        header.update({key: value for key, value in optional.items() if value})
        header["last_modified"] = contact.last_modified
        return header

    def encode(self, contact: ContactRecord, account: str) -> bytes:
        lines = []
        if contact.emails:
            lines.append(f"Email: {', '.join(contact.emails)}")
        for phone in contact.phones:
            lines.append(f"Phone: {phone}")
        work = ", ".join(p for p in (contact.company, contact.job_title) if p)
        if work:
            lines.append(f"Work: {work}")

        return format_document(
            self.header(contact, account), contact.display_name, "\n".join(lines)
        )


def default_codecs() -> dict[str, RecordCodec]:
    """Codecs for every mirrored category, keyed by category name."""
    return {CALENDAR: EventCodec(), CONTACTS: ContactCodec()}
