"""Command-line interface for miroir."""
