"""CLI commands module."""

from . import cal, config, contacts, sync

__all__ = ["sync", "cal", "contacts", "config"]
