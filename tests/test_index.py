"""Tests for the identity index."""

from pathlib import Path

import pytest

from miroir.sync.index import IdentityIndex


def write_record(directory: Path, name: str, record_id: str) -> Path:
    """Write a minimal record file carrying an id."""
    path = directory / name
    path.write_text(f"---\nid: {record_id}\n---\n\n# {name}\n")
    return path


@pytest.fixture
def directory(tmp_path: Path) -> Path:
    """Create an empty category directory."""
    directory = tmp_path / "work" / "calendar"
    directory.mkdir(parents=True)
    return directory


class TestBuild:
    """Tests for IdentityIndex.build."""

    def test_missing_directory_gives_empty_index(self, tmp_path: Path):
        """A directory that does not exist yet is simply empty."""
        index = IdentityIndex.build(tmp_path / "nothing")

        assert len(index) == 0
        assert index.owners == {}

    def test_maps_ids_to_paths(self, directory: Path):
        """Each file's id maps to its path."""
        a = write_record(directory, "a.md", "id-a")
        b = write_record(directory, "b.md", "id-b")

        index = IdentityIndex.build(directory)

        assert index.path_for("id-a") == a
        assert index.path_for("id-b") == b
        assert "id-a" in index
        assert "id-c" not in index

    def test_identity_ignores_filename(self, directory: Path):
        """A renamed file keeps its identity."""
        write_record(directory, "renamed-by-user.md", "id-a")

        index = IdentityIndex.build(directory)

        assert index.path_for("id-a").name == "renamed-by-user.md"

    def test_unidentifiable_files_are_reported_and_keep_their_name(
        self, directory: Path
    ):
        """Files without an id are excluded but their names stay taken."""
        (directory / "notes.md").write_text("# just notes\n")

        index = IdentityIndex.build(directory)

        assert len(index) == 0
        assert len(index.corrupt) == 1
        assert index.owners == {"notes.md": None}

    def test_foreign_files_take_names(self, directory: Path):
        """Non-Markdown files are not parsed but block their name."""
        (directory / "photo.jpg").write_bytes(b"\xff\xd8")

        index = IdentityIndex.build(directory)

        assert index.corrupt == []
        assert index.owners == {"photo.jpg": None}

    def test_directories_take_names(self, directory: Path):
        """A sub-directory named like a record blocks that name."""
        (directory / "2024-06-03-alpha.md").mkdir()

        index = IdentityIndex.build(directory)

        assert index.corrupt == []
        assert index.owners == {"2024-06-03-alpha.md": None}
        assert index.resolve_filename("2024-06-03-alpha", "id-a") == (
            "2024-06-03-alpha-2.md"
        )

    def test_hidden_files_are_ignored(self, directory: Path):
        """Temporary files from interrupted writes are not indexed."""
        write_record(directory, ".a.md.x1y2.tmp", "id-a")

        index = IdentityIndex.build(directory)

        assert len(index) == 0
        assert index.owners == {}

    def test_duplicate_ids(self, directory: Path):
        """The first name wins; later copies are duplicates."""
        first = write_record(directory, "a.md", "id-a")
        copy = write_record(directory, "a-copy.md", "id-a")

        index = IdentityIndex.build(directory)

        # "a-copy.md" sorts before "a.md"
        assert index.path_for("id-a") == copy
        assert index.duplicates == {"id-a": [first]}


class TestResolveFilename:
    """Tests for collision-free name resolution."""

    def test_free_base_name(self, directory: Path):
        """An untaken base name is used as is."""
        index = IdentityIndex.build(directory)

        assert index.resolve_filename("standup", "id-a") == "standup.md"

    def test_own_name_counts_as_free(self, directory: Path):
        """A record is never pushed off its own filename."""
        write_record(directory, "standup.md", "id-a")
        write_record(directory, "standup-2.md", "id-b")

        index = IdentityIndex.build(directory)

        assert index.resolve_filename("standup", "id-a") == "standup.md"
        assert index.resolve_filename("standup", "id-b") == "standup-2.md"

    def test_name_of_another_record_is_taken(self, directory: Path):
        """Different ids get the lowest free suffix."""
        write_record(directory, "standup.md", "id-a")

        index = IdentityIndex.build(directory)

        assert index.resolve_filename("standup", "id-c") == "standup-2.md"

    def test_unidentifiable_file_blocks_name(self, directory: Path):
        """Names held by unidentifiable files are never reused."""
        (directory / "standup.md").write_text("no header\n")

        index = IdentityIndex.build(directory)

        assert index.resolve_filename("standup", "id-a") == "standup-2.md"

    def test_claim_and_release(self, directory: Path):
        """claim() takes a name; release() frees it."""
        index = IdentityIndex.build(directory)

        index.claim("standup.md", "id-a")
        assert index.resolve_filename("standup", "id-b") == "standup-2.md"
        assert index.path_for("id-a") == directory / "standup.md"

        index.release("standup.md")
        assert index.resolve_filename("standup", "id-b") == "standup.md"
