"""Content domain models — pure Pydantic v2 data types.

These models describe the single content document behind the published
site: branding, a two-level photo gallery, FAQ entries, the location
block, and the fixed set of page copy fields.  Python attributes are
snake_case; the JSON wire shape (slot files, exports, the published
snapshot) uses the camelCase names via aliases.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel, Field, model_validator


class Slot(StrEnum):
    """The two durable storage locations for the document."""

    LIVE = "live"
    DRAFT = "draft"


def new_id() -> str:
    """Return a fresh, never-reused entity identifier."""
    return str(uuid.uuid4())


class _WireModel(BaseModel):
    model_config = {"populate_by_name": True}


class Photo(_WireModel):
    """A single gallery image with its copy."""

    id: str
    url: str = ""  # data URL, remote URL, or a legacy "idb:" reference
    caption: str = ""
    description: str = ""


class GallerySubSection(_WireModel):
    id: str
    title: str = ""
    photos: list[Photo] = Field(default_factory=list)


class GallerySection(_WireModel):
    id: str
    title: str = ""
    sub_sections: list[GallerySubSection] = Field(default_factory=list, alias="subSections")


class FAQ(_WireModel):
    id: str
    question: str = ""
    answer: str = ""


class Feature(_WireModel):
    id: str
    name: str = ""
    detail: str = ""


class LocationContent(_WireModel):
    title: str = ""
    description: str = ""
    image_url: str = Field(default="", alias="imageUrl")


class TextContent(_WireModel):
    """Named copy fields for the page sections."""

    hero_title: str = Field(default="", alias="heroTitle")
    hero_subtitle: str = Field(default="", alias="heroSubtitle")
    hero_image_url: str = Field(default="", alias="heroImageUrl")
    about_title: str = Field(default="", alias="aboutTitle")
    about_text: str = Field(default="", alias="aboutText")
    features_title: str = Field(default="", alias="featuresTitle")
    features: list[Feature] = Field(default_factory=list)
    considerations_title: str = Field(default="", alias="considerationsTitle")
    considerations_text: str = Field(default="", alias="considerationsText")


class ContentDocument(_WireModel):
    """The full content aggregate held in a slot.

    ``legacy_photos`` only exists as a migration source: documents that
    have passed through the migration engine always carry an empty list.
    """

    logo_url: str | None = Field(default=None, alias="logoUrl")
    favicon_url: str | None = Field(default=None, alias="faviconUrl")
    legacy_photos: list[Photo] = Field(default_factory=list, alias="photos")
    gallery: list[GallerySection] = Field(default_factory=list, alias="gallerySections")
    faqs: list[FAQ] = Field(default_factory=list)
    location: LocationContent
    text: TextContent = Field(alias="textContent")

    @model_validator(mode="after")
    def _check_unique_ids(self) -> ContentDocument:
        _require_unique(self.gallery, "gallery section")
        for section in self.gallery:
            _require_unique(section.sub_sections, f"sub-section of {section.id}")
            for sub in section.sub_sections:
                _require_unique(sub.photos, f"photo in {sub.id}")
        _require_unique(self.legacy_photos, "legacy photo")
        _require_unique(self.faqs, "FAQ")
        _require_unique(self.text.features, "feature")
        return self

    def iter_photos(self) -> Iterable[Photo]:
        """Yield every gallery photo in display order."""
        for section in self.gallery:
            for sub in section.sub_sections:
                yield from sub.photos


class _Identified(Protocol):
    id: str


def _require_unique(items: Iterable[_Identified], label: str) -> None:
    seen: set[str] = set()
    for item in items:
        item_id = item.id
        if item_id in seen:
            raise ValueError(f"Duplicate {label} id: {item_id}")
        seen.add(item_id)


def serialize(doc: ContentDocument, *, indent: int | None = None) -> str:
    """Canonical JSON form of a document, in the wire shape."""
    return doc.model_dump_json(by_alias=True, exclude_none=True, indent=indent)
