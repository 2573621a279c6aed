"""Local listing and search over the mirrored records.

Everything here reads the Markdown files written by the sync engine and
never touches the network.
"""

from .local import list_events, search_contacts
from .models import ContactSummary, EventSummary

__all__ = [
    "list_events",
    "search_contacts",
    "EventSummary",
    "ContactSummary",
]
