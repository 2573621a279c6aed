"""Identity index of a category directory.

The index maps record ids to the files that hold them. It is rebuilt
from disk at the start of every pass and thrown away afterwards, so files
the user deleted or edited between passes are seen as they really are.

Only the ``id`` header field counts for identity. Filenames are tracked
separately, as a map of taken names to their owning id, so collision
resolution never overwrites any existing file.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from miroir.storage.markdown import FILE_SUFFIX, read_record_id, unique_filename
from miroir.sync.errors import IdentityCorruptionError

logger = logging.getLogger(__name__)


@dataclass
class IdentityIndex:
    """Per-pass view of one account/category directory.

    Attributes:
        directory: The scanned directory.
        paths: Record id to the live file holding it.
        duplicates: Record id to extra files carrying the same id.
        owners: Every taken filename to its owning id (None when the
            file could not be identified).
        corrupt: Files excluded because their id could not be read.
    """

    directory: Path
    paths: dict[str, Path] = field(default_factory=dict)
    duplicates: dict[str, list[Path]] = field(default_factory=dict)
    owners: dict[str, str | None] = field(default_factory=dict)
    corrupt: list[IdentityCorruptionError] = field(default_factory=list)

    @classmethod
    def build(cls, directory: Path) -> "IdentityIndex":
        """Scan a directory and decode each record file's id.

        Hidden files (including in-flight temporary files) are ignored.
        Files are visited in name order, so when two files share an id the
        first name wins and the rest become duplicates.

        Args:
            directory: Category directory; may not exist yet.

        Returns:
            A fresh index.
        """
        index = cls(directory)
        if not directory.is_dir():
            return index

        for path in sorted(directory.iterdir()):
            if path.name.startswith("."):
                continue

            if path.suffix != FILE_SUFFIX or not path.is_file():
                # Not ours (other files, directories), but the name is taken
                index.owners[path.name] = None
                continue

            try:
                record_id = read_record_id(path)
            except IdentityCorruptionError as e:
                logger.warning("Ignoring unidentifiable file: %s", e)
                index.corrupt.append(e)
                index.owners[path.name] = None
                continue

            index.owners[path.name] = record_id
            if record_id in index.paths:
                logger.warning(
                    "Duplicate id %s in %s (live copy: %s)",
                    record_id,
                    path.name,
                    index.paths[record_id].name,
                )
                index.duplicates.setdefault(record_id, []).append(path)
            else:
                index.paths[record_id] = path

        logger.debug(
            "Indexed %d records in %s (%d unidentifiable)",
            len(index.paths),
            directory,
            len(index.corrupt),
        )
        return index

    def __contains__(self, record_id: str) -> bool:
        return record_id in self.paths

    def __len__(self) -> int:
        return len(self.paths)

    def path_for(self, record_id: str) -> Path | None:
        """Live path of a record, or None if it is not on disk."""
        return self.paths.get(record_id)

    def resolve_filename(self, base: str, record_id: str) -> str:
        """Lowest-suffixed free name for a record's base name.

        A name is free when nothing holds it or when it already belongs
        to ``record_id`` itself.
        """
        return unique_filename(
            base,
            lambda name: self.owners.get(name, record_id) == record_id,
        )

    def claim(self, name: str, record_id: str) -> None:
        """Record that ``record_id`` now lives at ``name``."""
        self.owners[name] = record_id
        self.paths[record_id] = self.directory / name

    def release(self, name: str) -> None:
        """Record that ``name`` no longer exists on disk."""
        self.owners.pop(name, None)
