"""Sync engine for the local record mirror.

Coordinates fetching records from Microsoft Graph and converging one
account/category directory of Markdown files to match. Supports two
strategies:

- Full-window sync: the remote snapshot of a bounded range is the whole
  truth, so local records missing from it are deleted (calendar).
- Delta sync: only changes and tombstones since the stored cursor are
  applied; nothing is deleted by absence (contacts).

Identity is always the ``id`` header field. The identity index is rebuilt
from disk on every pass, never reused, so user edits and deletions
between passes are taken into account.
"""

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import yaml

from miroir.storage.markdown import (
    FILE_SUFFIX,
    RecordCodec,
    decode_header,
    default_codecs,
    write_atomic,
)
from miroir.sync.errors import (
    IdentityCorruptionError,
    RecordWriteError,
    StatePersistError,
)
from miroir.sync.graph import RemoteSource
from miroir.sync.index import IdentityIndex
from miroir.sync.state import SyncStateStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of one sync pass.

    Tracks what happened to local files and every non-fatal problem.
    """

    created: int = 0
    updated: int = 0
    renamed: int = 0
    deleted: int = 0
    warnings: int = 0
    warning_details: list[str] = field(default_factory=list)

    def add_warning(self, subject: str, error: object) -> None:
        """Record a non-fatal problem.

        Args:
            subject: Record id or file the problem concerns.
            error: Error or description.
        """
        self.warnings += 1
        self.warning_details.append(f"{subject}: {error}")


# Type for progress callback: (category, current, total) -> None
ProgressCallback = Callable[[str, int, int], None]

# Errors a single record write may raise; anything else is a bug
_WRITE_ERRORS = (OSError, ValueError, TypeError, yaml.YAMLError)


def list_local_records(data_dir: Path, account: str, category: str) -> list[dict]:
    """Decode the headers of every identifiable record file.

    Read-side helper for listing and search; never touches the network.
    Files without a readable ``id`` are skipped.

    Args:
        data_dir: Root of the mirror.
        account: Account name.
        category: Category name (e.g. "calendar").

    Returns:
        Header dicts sorted by filename, each with an added "path" key.
    """
    directory = data_dir / account / category
    if not directory.is_dir():
        return []

    headers = []
    for path in sorted(directory.glob(f"*{FILE_SUFFIX}")):
        if path.name.startswith("."):
            continue
        try:
            header = decode_header(path)
        except IdentityCorruptionError as e:
            logger.debug("Skipping %s", e)
            continue
        if not header.get("id"):
            continue
        header["path"] = str(path)
        headers.append(header)

    return headers


def _tally(written: Mapping[str, str], result: SyncResult) -> None:
    """Add the per-record actions of a pass to its result."""
    for action in written.values():
        if action == "created":
            result.created += 1
        elif action == "renamed":
            result.renamed += 1
        else:
            result.updated += 1

class SyncEngine:
    """Engine for mirroring remote records into Markdown files.

    One call to run_full_window_sync() or run_delta_sync() is one pass
    over one account/category. A pass holds that directory's lock for its
    whole duration and proceeds as: index, fetch, apply, tombstones or
    sweep, settle, commit.

    Example:
        store = SyncStateStore(data_dir / ".sync")
        with GraphClient(token, tz) as client:
            engine = SyncEngine(client, data_dir, store)
            result = engine.run_full_window_sync("work", "calendar", start, end)
        print(f"Created {result.created}, deleted {result.deleted}")
    """

    def __init__(
        self,
        remote: RemoteSource,
        data_dir: Path,
        state: SyncStateStore,
        codecs: Mapping[str, RecordCodec] | None = None,
    ):
        """Initialize sync engine.

        Args:
            remote: Authenticated remote source to fetch records from.
            data_dir: Root of the mirror (<data_dir>/<account>/<category>/).
            state: Store for cursors, timestamps and pass locks.
            codecs: Codec per category; defaults to calendar and contacts.
        """
        self._remote = remote
        self._data_dir = data_dir
        self._state = state
        self._codecs = dict(codecs) if codecs is not None else default_codecs()

    def category_dir(self, account: str, category: str) -> Path:
        """Directory holding one account's records of one category."""
        return self._data_dir / account / category

    def _codec(self, category: str) -> RecordCodec:
        try:
            return self._codecs[category]
        except KeyError:
            raise ValueError(f"Unknown category '{category}'")

    def run_full_window_sync(
        self,
        account: str,
        category: str,
        start: datetime,
        end: datetime,
        progress_callback: ProgressCallback | None = None,
    ) -> SyncResult:
        """Mirror a complete snapshot of a bounded window.

        Every local record whose id is absent from the snapshot is deleted,
        which propagates both upstream deletions and records that moved
        out of the window.

        Args:
            account: Account name.
            category: Category name (e.g. "calendar").
            start: Window start.
            end: Window end.
            progress_callback: Optional callback for progress updates.

        Returns:
            SyncResult with created, updated, renamed, deleted and warnings.

        Raises:
            RemoteFetchError: If the fetch fails; nothing was changed.
            SyncLockedError: If another pass owns the directory.
        """
        codec = self._codec(category)
        result = SyncResult()

        with self._state.lock(account, category):
            index = self._build_index(account, category, result)
            records = self._remote.full_window(category, start, end)

            written = self._apply_records(
                account, codec, index, records, result, progress_callback
            )

            # Failed writes count as seen, so their old files survive
            seen = {record.id for record in records}
            for record_id in list(index.paths):
                if record_id not in seen:
                    logger.debug("Record %s is gone upstream", record_id)
                    self._delete_record(index, record_id, result)

            self._settle(codec, index, records, written, result)
            _tally(written, result)
            self._commit(account, category, None, result)

        self._log_summary(account, category, "full-window", result)
        return result

    def run_delta_sync(
        self,
        account: str,
        category: str,
        progress_callback: ProgressCallback | None = None,
    ) -> SyncResult:
        """Apply the changes since the stored delta cursor.

        On the first pass (no cursor) the remote enumerates everything and
        seeds a cursor. Only explicit tombstones delete local files; a
        delta batch is never treated as the complete remote set.

        Args:
            account: Account name.
            category: Category name (e.g. "contacts").
            progress_callback: Optional callback for progress updates.

        Returns:
            SyncResult with created, updated, renamed, deleted and warnings.

        Raises:
            RemoteFetchError: If the fetch fails; nothing was changed and
                the stored cursor is untouched.
            SyncLockedError: If another pass owns the directory.
        """
        codec = self._codec(category)
        result = SyncResult()

        with self._state.lock(account, category):
            index = self._build_index(account, category, result)
            cursor = self._state.get_cursor(account, category)
            batch = self._remote.delta(category, cursor)

            written = self._apply_records(
                account, codec, index, batch.records, result, progress_callback
            )

            for record_id in batch.tombstones:
                if record_id in index:
                    self._delete_record(index, record_id, result)
                else:
                    logger.debug("Tombstone for unknown record %s", record_id)

            self._settle(codec, index, batch.records, written, result)
            _tally(written, result)
            self._commit(account, category, batch.cursor, result)

        self._log_summary(account, category, "delta", result)
        return result

    def store_record(self, account: str, category: str, record) -> Path:
        """Mirror a single record outside of a pass.

        Used right after creating a record upstream, so it shows up
        locally before the next sync. Naming and collision rules are
        those of a pass.

        Returns:
            Path of the record's file.

        Raises:
            RecordWriteError: If the file cannot be written.
            SyncLockedError: If a pass owns the directory.
        """
        codec = self._codec(category)
        with self._state.lock(account, category):
            index = IdentityIndex.build(self.category_dir(account, category))
            self._remove_duplicates(index, record.id, SyncResult())
            self._write_record(account, codec, index, record)
            return index.paths[record.id]

    def remove_record(
        self, account: str, category: str, record_id: str
    ) -> Path | None:
        """Delete every local file of one record, found by its id.

        Returns:
            The deleted live path, or None if the record was not mirrored.

        Raises:
            RecordWriteError: If a file cannot be deleted.
            SyncLockedError: If a pass owns the directory.
        """
        self._codec(category)
        with self._state.lock(account, category):
            index = IdentityIndex.build(self.category_dir(account, category))
            path = index.path_for(record_id)
            if path is None:
                return None

            result = SyncResult()
            self._delete_record(index, record_id, result)
            if result.warnings:
                raise RecordWriteError(record_id, "; ".join(result.warning_details))
            return path

    def list_local_records(self, account: str, category: str) -> list[dict]:
        """Decoded headers of the mirrored records (see list_local_records)."""
        return list_local_records(self._data_dir, account, category)

    def _build_index(
        self, account: str, category: str, result: SyncResult
    ) -> IdentityIndex:
        """Scan the category directory; unidentifiable files become warnings."""
        index = IdentityIndex.build(self.category_dir(account, category))
        for error in index.corrupt:
            result.add_warning("local", error)
        return index

    def _apply_records(
        self,
        account: str,
        codec: RecordCodec,
        index: IdentityIndex,
        records: list,
        result: SyncResult,
        progress_callback: ProgressCallback | None,
    ) -> dict[str, str]:
        """Create, rename or update the file of every incoming record.

        Returns:
            The action taken per written id, in batch order. Records whose
            write failed are counted as warnings and left out; they keep
            their old file until the next pass.
        """
        written: dict[str, str] = {}
        total = len(records)

        for idx, record in enumerate(records):
            if progress_callback:
                progress_callback(codec.category, idx + 1, total)

            self._remove_duplicates(index, record.id, result)

            try:
                written[record.id] = self._write_record(
                    account, codec, index, record
                )
            except RecordWriteError as e:
                logger.warning("Failed to write record %s", e)
                result.add_warning(e.record_id, e.__cause__ or e)

        return written

    def _settle(
        self,
        codec: RecordCodec,
        index: IdentityIndex,
        records: list,
        written: dict[str, str],
        result: SyncResult,
    ) -> None:
        """Move written records onto names freed later in the pass.

        A name released by a rename, tombstone or sweep after a record was
        placed is taken back here, so the next pass over the same remote
        set finds every file already on its name. Moves only ever go to a
        lower suffix, which bounds the loop.
        """
        bases = {
            record.id: codec.base_name(record)
            for record in records
            if record.id in written
        }
        stuck: set[str] = set()
        moved = True

        while moved:
            moved = False
            for record_id, base in bases.items():
                current = index.path_for(record_id)
                if record_id in stuck or current is None:
                    continue
                target_name = index.resolve_filename(base, record_id)
                if current.name == target_name:
                    continue

                try:
                    os.rename(current, index.directory / target_name)
                except OSError as e:
                    logger.warning("Failed to move %s: %s", current.name, e)
                    result.add_warning(record_id, e)
                    stuck.add(record_id)
                    continue

                index.release(current.name)
                index.claim(target_name, record_id)
                if written[record_id] == "updated":
                    written[record_id] = "renamed"
                logger.debug("Settled %s -> %s", current.name, target_name)
                moved = True

    def _write_record(
        self,
        account: str,
        codec: RecordCodec,
        index: IdentityIndex,
        record,
    ) -> str:
        """Write one record to its derived path.

        Content is always regenerated from the record alone, so a file that
        drifted from earlier sync output converges again.

        Returns:
            "created", "renamed" or "updated".

        Raises:
            RecordWriteError: If encoding or any filesystem step fails.
        """
        try:
            data = codec.encode(record, account)
            target_name = index.resolve_filename(codec.base_name(record), record.id)
            target = index.directory / target_name
            current = index.path_for(record.id)

            if current is None:
                index.directory.mkdir(parents=True, exist_ok=True)
                write_atomic(target, data)
                index.claim(target_name, record.id)
                logger.debug("Created %s", target_name)
                return "created"

            if current.name != target_name:
                # Move first, then rewrite: the record is never in two places
                os.rename(current, target)
                index.release(current.name)
                index.claim(target_name, record.id)
                write_atomic(target, data)
                logger.debug("Renamed %s -> %s", current.name, target_name)
                return "renamed"

            write_atomic(target, data)
            return "updated"
        except _WRITE_ERRORS as e:
            raise RecordWriteError(record.id, str(e)) from e

    def _remove_duplicates(
        self, index: IdentityIndex, record_id: str, result: SyncResult
    ) -> None:
        """Delete extra files that carry the same id as the live one."""
        for path in index.duplicates.pop(record_id, []):
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Failed to delete duplicate %s: %s", path, e)
                result.add_warning(record_id, e)
                continue
            index.release(path.name)
            result.deleted += 1
            logger.debug("Deleted duplicate %s", path.name)

    def _delete_record(
        self, index: IdentityIndex, record_id: str, result: SyncResult
    ) -> None:
        """Delete every file of a record; a missing file counts as deleted."""
        self._remove_duplicates(index, record_id, result)

        path = index.paths.pop(record_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)
            result.add_warning(record_id, e)
            return

        index.release(path.name)
        result.deleted += 1
        logger.debug("Deleted %s", path.name)

    def _commit(
        self,
        account: str,
        category: str,
        cursor: str | None,
        result: SyncResult,
    ) -> None:
        """Persist the pass; a failure only means redundant work next time."""
        try:
            self._state.save(account, category, delta_cursor=cursor)
        except StatePersistError as e:
            logger.warning("Failed to save sync state: %s", e)
            result.add_warning("state", e)

    def _log_summary(
        self, account: str, category: str, mode: str, result: SyncResult
    ) -> None:
        logger.info(
            "%s/%s %s sync: %d created, %d updated, %d renamed, %d deleted, "
            "%d warnings",
            account,
            category,
            mode,
            result.created,
            result.updated,
            result.renamed,
            result.deleted,
            result.warnings,
        )
