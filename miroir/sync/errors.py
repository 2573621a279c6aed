"""Exceptions raised while synchronizing the local mirror.

Fatal errors (RemoteFetchError, SyncLockedError) abort a pass before any
file is touched. The others are scoped to a single file or to the state
side-car; the engine logs them and counts them as warnings.
RemoteWriteError only comes from the explicit create and delete
commands, never from a pass.
"""


class SyncError(Exception):
    """Base class for synchronization errors."""

    pass


class RemoteFetchError(SyncError):
    """Fetching records from the remote service failed.

    No partial result is ever returned alongside this error; retrying
    with the previous cursor is always safe.
    """

    pass


class CursorExpiredError(RemoteFetchError):
    """The remote service no longer accepts the stored delta cursor."""

    pass


class RemoteWriteError(SyncError):
    """Creating or deleting a record upstream failed."""

    pass


class RecordWriteError(SyncError):
    """Writing, moving or deleting one record's file failed."""

    def __init__(self, record_id: str, message: str):
        super().__init__(f"{record_id}: {message}")
        self.record_id = record_id


class IdentityCorruptionError(SyncError):
    """A local file has no readable header or no id."""

    pass


class StatePersistError(SyncError):
    """The sync state side-car could not be written."""

    pass


class SyncLockedError(SyncError):
    """Another pass already owns the account/category directory."""

    pass
