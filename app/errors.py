"""Exception types shared across the AniCache service."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a required setting (credentials, identifiers) is missing."""


class ProviderError(RuntimeError):
    """Raised by lookup adapters on transport or provider-side failures."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class BlobNotFoundError(LookupError):
    """Raised by blob stores when the requested document does not exist."""


class SnapshotError(RuntimeError):
    """Base class for snapshot persistence failures."""


class SnapshotCorruptError(SnapshotError, ValueError):
    """The stored snapshot could not be decoded."""


class SnapshotTooLargeError(SnapshotError):
    """The serialized snapshot exceeds the store's size ceiling."""

    def __init__(self, size: int, limit: int, *, reduced: bool):
        detail = "even with previous generation cleared, " if reduced else ""
        super().__init__(
            f"Snapshot size {size / 1024:.2f}KB {detail}exceeds limit of {limit / 1024:.2f}KB"
        )
        self.size = size
        self.limit = limit
        self.reduced = reduced


class EmptyRefreshError(RuntimeError):
    """A refresh produced no items and therefore cannot replace the snapshot."""
