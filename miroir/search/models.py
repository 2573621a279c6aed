"""Data models for local listing and search results."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class EventSummary:
    """A mirrored calendar event, as shown by ``miroir cal list``."""

    id: str
    account: str  # Account name from config
    file: str  # Local Markdown file
    start: datetime
    end: datetime | None
    subject: str = ""
    location: str | None = None
    all_day: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "account": self.account,
            "file": self.file,
            "start": self.start.isoformat(),
            "end": self.end.isoformat() if self.end else None,
            "subject": self.subject,
            "location": self.location,
            "all_day": self.all_day,
        }


@dataclass
class ContactSummary:
    """A mirrored contact, as shown by ``miroir contacts search``."""

    id: str
    account: str
    file: str
    display_name: str
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    company: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "account": self.account,
            "file": self.file,
            "display_name": self.display_name,
            "emails": self.emails,
            "phones": self.phones,
            "company": self.company,
        }
