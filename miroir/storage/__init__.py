"""Markdown storage of mirrored records."""
