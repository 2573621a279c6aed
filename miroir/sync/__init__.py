"""Synchronization of Microsoft 365 records into the local mirror."""
