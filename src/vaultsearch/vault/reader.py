"""Vault reader — enumerates note files and reads their content for indexing."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import frontmatter

from vaultsearch.errors import PathTraversalError
from vaultsearch.vault.models import NoteFile

if TYPE_CHECKING:
    from vaultsearch.config import VaultConfig

logger = logging.getLogger(__name__)


class VaultReader:
    """Reads notes from a vault directory.

    Paths crossing this boundary are vault-relative POSIX strings, the same
    keys the index uses.
    """

    def __init__(self, config: VaultConfig) -> None:
        self.config = config
        self.vault_root = config.path.resolve()
        self._excluded = set(config.excluded_folders)

    def is_note_path(self, path: str) -> bool:
        """Whether *path* has the note extension and sits outside excluded folders."""
        rel = PurePosixPath(path)
        if rel.suffix != self.config.note_extension:
            return False
        return not any(part in self._excluded for part in rel.parts[:-1])

    def iter_note_paths(self) -> list[str]:
        """All eligible notes in the vault, sorted."""
        paths: list[str] = []
        for file in self.vault_root.rglob(f"*{self.config.note_extension}"):
            if not file.is_file():
                continue
            rel = file.relative_to(self.vault_root).as_posix()
            if self.is_note_path(rel):
                paths.append(rel)
        paths.sort()
        logger.debug("Found %d notes in %s", len(paths), self.vault_root)
        return paths

    def resolve(self, path: str) -> Path:
        """Absolute path for a vault-relative *path*.

        Raises:
            PathTraversalError: The resolved path escapes the vault root.
        """
        candidate = (self.vault_root / path).resolve()
        try:
            candidate.relative_to(self.vault_root)
        except ValueError:
            raise PathTraversalError(path, self.vault_root) from None
        return candidate

    def relative_path(self, path: str | Path) -> str | None:
        """Vault-relative POSIX path, or None for paths outside the vault."""
        p = Path(path)
        if not p.is_absolute():
            p = self.vault_root / p
        try:
            return p.resolve().relative_to(self.vault_root).as_posix()
        except ValueError:
            return None

    def read_note(self, path: str) -> NoteFile | None:
        """Read a note's text and modification time (epoch ms).

        Returns None if the file no longer exists. Frontmatter is stripped
        when ``strip_frontmatter`` is enabled.
        """
        file = self.resolve(path)
        try:
            stat = file.stat()
            text = file.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Note vanished before read: %s", path)
            return None

        if self.config.strip_frontmatter:
            text = frontmatter.loads(text).content

        return NoteFile(path=path, content=text, modified=stat.st_mtime * 1000)
