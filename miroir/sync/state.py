"""Sync state management for incremental synchronization.

Stores, per account and category, the opaque delta cursor returned by
Microsoft Graph (an ``@odata.deltaLink``) and the time of the last
successful pass.

State is stored in <data_dir>/.sync/<account>/<category>.json, outside
the record directories, next to the lock file that keeps two passes from
working on the same directory at once.
"""

import fcntl
import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from miroir.storage.markdown import write_atomic
from miroir.sync.errors import StatePersistError, SyncLockedError

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Persisted state of one account/category.

    Attributes:
        delta_cursor: Opaque resume position in the remote change stream,
            or None when the category has none yet (or never uses one).
        last_sync: When the last successful pass committed.
    """

    delta_cursor: str | None = None
    last_sync: datetime | None = None


class SyncStateStore:
    """Loads and saves sync state side-cars.

    State file format:
    {
        "delta_cursor": "https://graph.microsoft.com/v1.0/me/contacts/delta?$deltatoken=...",
        "last_sync": "2024-01-15T10:30:00+00:00"
    }

    Example:
        store = SyncStateStore(Path("~/.local/share/miroir/.sync").expanduser())
        cursor = store.get_cursor("work", "contacts")  # None on first run
        # ... perform sync ...
        store.save("work", "contacts", delta_cursor=new_cursor)
    """

    def __init__(self, state_dir: Path):
        """Initialize the store.

        Args:
            state_dir: Directory holding one sub-directory per account.
        """
        self._state_dir = state_dir

    @property
    def state_dir(self) -> Path:
        """Get the root directory of the state files."""
        return self._state_dir

    def state_file(self, account: str, category: str) -> Path:
        """Get the path to an account/category state file."""
        return self._state_dir / account / f"{category}.json"

    def load(self, account: str, category: str) -> SyncState | None:
        """Load sync state from disk.

        Returns:
            The stored state, or None if no usable state file exists.
        """
        state_file = self.state_file(account, category)
        if not state_file.exists():
            return None

        try:
            data = json.loads(state_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            # Corrupted or unreadable file - treat as no state
            logger.warning("Ignoring unreadable sync state %s: %s", state_file, e)
            return None

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed sync state %s", state_file)
            return None

        last_sync = data.get("last_sync")
        try:
            parsed_last_sync = datetime.fromisoformat(last_sync) if last_sync else None
        except (TypeError, ValueError):
            parsed_last_sync = None

        return SyncState(
            delta_cursor=data.get("delta_cursor") or None,
            last_sync=parsed_last_sync,
        )

    def get_cursor(self, account: str, category: str) -> str | None:
        """Get the stored delta cursor, or None if no previous sync."""
        state = self.load(account, category)
        return state.delta_cursor if state else None

    def get_last_sync(self, account: str, category: str) -> datetime | None:
        """Get the timestamp of the last successful pass."""
        state = self.load(account, category)
        return state.last_sync if state else None

    def save(
        self,
        account: str,
        category: str,
        delta_cursor: str | None = None,
    ) -> SyncState:
        """Commit a successful pass.

        Refreshes last_sync; replaces the cursor only when a new one is
        given, so full-window passes keep whatever cursor was stored.

        Args:
            account: Account name.
            category: Category name (e.g. "contacts").
            delta_cursor: New cursor from a fully drained delta query.

        Returns:
            The state that was written.

        Raises:
            StatePersistError: If the file cannot be written.
        """
        previous = self.load(account, category) or SyncState()
        state = SyncState(
            delta_cursor=delta_cursor or previous.delta_cursor,
            last_sync=datetime.now(timezone.utc),
        )

        payload = {
            "delta_cursor": state.delta_cursor,
            "last_sync": state.last_sync.isoformat(),
        }

        state_file = self.state_file(account, category)
        try:
            state_file.parent.mkdir(parents=True, exist_ok=True)
            write_atomic(state_file, json.dumps(payload, indent=2).encode("utf-8"))
            # Cursors embed tokens of the account's change stream
            state_file.chmod(0o600)
        except OSError as e:
            raise StatePersistError(f"{state_file}: {e}")

        return state

    def clear(self, account: str, category: str) -> None:
        """Clear sync state (forces a full enumeration on next run).

        Deletes the state file if it exists.
        """
        state_file = self.state_file(account, category)
        if state_file.exists():
            state_file.unlink()

    @contextmanager
    def lock(self, account: str, category: str) -> Iterator[None]:
        """Hold the exclusive pass lock of an account/category.

        The lock is an flock() on <account>/<category>.lock and is released
        automatically if the process dies.

        Raises:
            SyncLockedError: If another pass holds the lock.
        """
        lock_file = self._state_dir / account / f"{category}.lock"
        lock_file.parent.mkdir(parents=True, exist_ok=True)

        fd = os.open(lock_file, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                raise SyncLockedError(
                    f"Another sync of {account}/{category} is already running"
                )
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
