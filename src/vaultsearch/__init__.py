"""VaultSearch — local semantic search over a markdown note vault."""

__version__ = "0.1.0"
