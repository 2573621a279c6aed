"""miroir - local Markdown mirror of Microsoft 365 calendars and contacts."""

__version__ = "0.1.0"
