"""Error taxonomy for the content store, migration, and session layers."""

from __future__ import annotations


class ContentError(Exception):
    """Base error for content storage and resolution failures."""


class InvalidFormatError(ContentError):
    """A candidate document failed shape validation or could not be decoded."""


class CapacityExceededError(ContentError):
    """A slot write was rejected because the payload is too large.

    The remedy differs from a generic retry: the editor has to shrink the
    embedded images before the draft can be persisted.
    """

    def __init__(self, size: int | None = None, limit: int | None = None) -> None:
        self.size = size
        self.limit = limit
        detail = ""
        if size is not None and limit is not None:
            detail = f" ({size} bytes, limit {limit})"
        super().__init__(
            "Failed to save changes locally: the content is too large"
            f"{detail}. Please upload smaller images and try again."
        )


class TransientIOError(ContentError):
    """Any other read, write, or network failure."""


class MigrationLookupMissError(ContentError):
    """A legacy indirection reference could not be resolved."""

    def __init__(self, token: str, photo_id: str | None = None) -> None:
        self.token = token
        self.photo_id = photo_id
        where = f" for photo {photo_id}" if photo_id else ""
        super().__init__(f"Unresolved image reference {token!r}{where}")
