"""Compiled-in initial content.

Used when no slot, legacy record, or published snapshot yields a valid
document, and as the source of the default gallery skeleton and
location block during migration.  Ids here are fixed so migration
stays deterministic.
"""

from __future__ import annotations

import copy
from typing import Any

from villacms.content.models import ContentDocument, GallerySection, LocationContent

DEFAULT_LOCATION: dict[str, Any] = {
    "title": "Location",
    "description": "Location description placeholder",
    "imageUrl": "",
}

DEFAULT_GALLERY: list[dict[str, Any]] = [
    {
        "id": "section-interior",
        "title": "Interior",
        "subSections": [
            {"id": "sub-living", "title": "Living Areas", "photos": []},
            {"id": "sub-bedrooms", "title": "Bedrooms", "photos": []},
        ],
    },
    {
        "id": "section-exterior",
        "title": "Exterior",
        "subSections": [
            {"id": "sub-gardens", "title": "Gardens & Terraces", "photos": []},
            {"id": "sub-pool", "title": "Pool", "photos": []},
        ],
    },
]

INITIAL_CONTENT: dict[str, Any] = {
    "photos": [],
    "gallerySections": DEFAULT_GALLERY,
    "faqs": [
        {
            "id": "faq-viewings",
            "question": "How can I arrange a private viewing?",
            "answer": "Use the booking link on this page to choose a time that suits you.",
        },
    ],
    "location": DEFAULT_LOCATION,
    "textContent": {
        "heroTitle": "Villa Luar",
        "heroSubtitle": "A private Mediterranean retreat",
        "heroImageUrl": "",
        "aboutTitle": "About the Villa",
        "aboutText": "",
        "featuresTitle": "Features",
        "features": [],
        "considerationsTitle": "Considerations",
        "considerationsText": "",
    },
}


def default_location_data() -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_LOCATION)


def default_gallery_data() -> list[dict[str, Any]]:
    return copy.deepcopy(DEFAULT_GALLERY)


def default_location() -> LocationContent:
    return LocationContent.model_validate(DEFAULT_LOCATION)


def default_gallery() -> list[GallerySection]:
    return [GallerySection.model_validate(s) for s in DEFAULT_GALLERY]


def initial_content() -> ContentDocument:
    """Return a fresh copy of the compiled-in document."""
    return ContentDocument.model_validate(copy.deepcopy(INITIAL_CONTENT))
