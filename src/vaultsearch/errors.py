"""Error taxonomy for the indexing and retrieval pipeline.

Only ``ConfigurationError`` is surfaced to callers (from
``IndexStore.initialize``). The others are raised internally and caught
at operation boundaries, where they are logged with the note path.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class VaultSearchError(Exception):
    """Base class for all VaultSearch errors."""


class ConfigurationError(VaultSearchError):
    """Bad or missing provider settings."""


class ProviderError(VaultSearchError):
    """The embedding backend failed or returned an unusable response."""

    def __init__(self, message: str, provider: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.original = original


class PersistenceError(VaultSearchError):
    """Reading, writing or serializing the index snapshot failed."""


class ValidationError(VaultSearchError):
    """A unit of work (chunk, note, path) was rejected before indexing."""


class PathTraversalError(ValidationError):
    """Raised when a note path escapes the vault root."""

    def __init__(self, user_path: str, vault_root: Path) -> None:
        self.user_path = user_path
        self.vault_root = vault_root
        super().__init__(f"Path traversal blocked: '{user_path}' escapes vault root '{vault_root}'")
