"""Tests for the vault reader."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from vaultsearch.config import VaultConfig
from vaultsearch.errors import PathTraversalError
from vaultsearch.vault.reader import VaultReader

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def tmp_vault(tmp_path: Path) -> Path:
    """Create a temporary vault with sample notes."""
    vault = tmp_path / "vault"
    (vault / "projects").mkdir(parents=True)
    (vault / ".obsidian").mkdir()
    (vault / "attachments").mkdir()

    (vault / "projects" / "garden.md").write_text(
        "---\ntags: [outdoors]\n---\n\n# Garden\n\nPlant tomatoes in spring.\n"
    )
    (vault / "inbox.md").write_text("Quick thought about tea\n")
    (vault / ".obsidian" / "config.md").write_text("ignored\n")
    (vault / "attachments" / "photo.png").write_bytes(b"\x89PNG")
    return vault


@pytest.fixture
def reader(tmp_vault: Path) -> VaultReader:
    return VaultReader(VaultConfig(path=tmp_vault))


class TestEligibility:
    def test_note_extension(self, reader: VaultReader) -> None:
        assert reader.is_note_path("projects/garden.md")
        assert not reader.is_note_path("attachments/photo.png")
        assert not reader.is_note_path("notes.md.bak")

    def test_excluded_folders(self, reader: VaultReader) -> None:
        assert not reader.is_note_path(".obsidian/config.md")
        assert not reader.is_note_path("deep/.trash/old.md")

    def test_iter_note_paths_sorted(self, reader: VaultReader) -> None:
        assert reader.iter_note_paths() == ["inbox.md", "projects/garden.md"]


class TestReadNote:
    def test_reads_content_and_mtime(self, reader: VaultReader, tmp_vault: Path) -> None:
        path = tmp_vault / "inbox.md"
        os.utime(path, (1_700_000_000, 1_700_000_000))

        note = reader.read_note("inbox.md")
        assert note is not None
        assert note.path == "inbox.md"
        assert note.content == "Quick thought about tea\n"
        assert note.modified == pytest.approx(1_700_000_000_000)

    def test_frontmatter_kept_by_default(self, reader: VaultReader) -> None:
        note = reader.read_note("projects/garden.md")
        assert note.content.startswith("---\ntags:")

    def test_strip_frontmatter(self, tmp_vault: Path) -> None:
        reader = VaultReader(VaultConfig(path=tmp_vault, strip_frontmatter=True))
        note = reader.read_note("projects/garden.md")
        assert "tags:" not in note.content
        assert "Plant tomatoes in spring." in note.content

    def test_missing_file(self, reader: VaultReader) -> None:
        assert reader.read_note("nope.md") is None

    def test_traversal_blocked(self, reader: VaultReader) -> None:
        with pytest.raises(PathTraversalError):
            reader.read_note("../../etc/passwd.md")


class TestRelativePath:
    def test_inside_vault(self, reader: VaultReader, tmp_vault: Path) -> None:
        assert reader.relative_path(tmp_vault / "projects" / "garden.md") == "projects/garden.md"

    def test_outside_vault(self, reader: VaultReader, tmp_path: Path) -> None:
        assert reader.relative_path(tmp_path / "elsewhere.md") is None
