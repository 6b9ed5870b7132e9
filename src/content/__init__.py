"""Content domain — the site document, its two durable slots, and sessions.

This package holds the document model, the live/draft slot store, the
migration engine for older document shapes, and the session controller
that decides which copy a viewer sees.
"""

from villacms.content.models import (
    FAQ,
    ContentDocument,
    Feature,
    GallerySection,
    GallerySubSection,
    LocationContent,
    Photo,
    Slot,
    TextContent,
    new_id,
    serialize,
)
from villacms.content.session import ContentSession, PersistState, ViewerMode
from villacms.content.store import FileSlotStore, MemorySlotStore, SlotStore

__all__ = [
    "FAQ",
    "ContentDocument",
    "ContentSession",
    "Feature",
    "FileSlotStore",
    "GallerySection",
    "GallerySubSection",
    "LocationContent",
    "MemorySlotStore",
    "PersistState",
    "Photo",
    "Slot",
    "SlotStore",
    "TextContent",
    "ViewerMode",
    "new_id",
    "serialize",
]
