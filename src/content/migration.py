"""Migration engine — upgrades older document shapes to the current schema.

Everything here is pure and deterministic: no storage or network access.
The steps, applied in order to any document that did not come straight
from an in-session edit:

1. shape validation (``is_valid_shape``)
2. flat photo list to two-level gallery (``migrate_gallery``)
3. defaulting of missing sections (``apply_defaults``)
4. indirect payload rehydration for legacy-storage records (``rehydrate``)

``migrate`` bundles steps 1-3 and is idempotent.  Step 4 needs payloads
read from the legacy secondary store, so the caller performs the reads
and passes the results in.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from villacms.content.defaults import default_gallery_data, default_location_data
from villacms.content.models import ContentDocument, Photo
from villacms.errors import InvalidFormatError, MigrationLookupMissError

INDIRECTION_PREFIX = "idb:"

DEPRECATED_FIELDS = ("viewingSlots",)

# Attribute names accepted on input, mapped to their wire names.
_TOP_LEVEL_ALIASES = {
    "text": "textContent",
    "gallery": "gallerySections",
    "legacy_photos": "photos",
    "logo_url": "logoUrl",
    "favicon_url": "faviconUrl",
}

_IMPORTED_SUB_SECTION = {"id": "sub-imported", "title": "Imported Photos", "photos": []}


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    for name, alias in _TOP_LEVEL_ALIASES.items():
        if name in data and alias not in data:
            data[alias] = data.pop(name)
    return data


def is_valid_shape(value: Any) -> bool:
    """Check the minimum shape required to treat a value as a document.

    The copy block must carry both considerations fields and ``faqs``
    must be a list (possibly empty).
    """
    if not isinstance(value, Mapping):
        return False
    text = value.get("textContent", value.get("text"))
    if not isinstance(text, Mapping):
        return False
    has_title = "considerationsTitle" in text or "considerations_title" in text
    has_text = "considerationsText" in text or "considerations_text" in text
    return has_title and has_text and isinstance(value.get("faqs"), list)


def strip_deprecated(data: dict[str, Any]) -> dict[str, Any]:
    """Drop retired top-level fields in place."""
    for name in DEPRECATED_FIELDS:
        data.pop(name, None)
    return data


def migrate_gallery(data: dict[str, Any]) -> dict[str, Any]:
    """Move a flat legacy photo list into the hierarchical gallery.

    With an empty or absent gallery, the default skeleton is built and
    every legacy photo lands in its first sub-section, in order.  When a
    gallery already exists, legacy photos it does not already contain
    are appended to its first sub-section.  ``photos`` is always left
    empty, so a second run is a no-op.
    """
    legacy = data.get("photos") or []
    if not legacy:
        data["photos"] = []
        return data

    gallery = data.get("gallerySections")
    if not gallery:
        gallery = default_gallery_data()
        gallery[0]["subSections"][0]["photos"] = list(legacy)
    else:
        present = {
            photo.get("id")
            for section in gallery
            for sub in section.get("subSections") or []
            for photo in sub.get("photos") or []
            if isinstance(photo, Mapping)
        }
        missing = [p for p in legacy if not isinstance(p, Mapping) or p.get("id") not in present]
        if missing:
            first = gallery[0]
            subs = first.setdefault("subSections", [])
            if not subs:
                subs.append(copy.deepcopy(_IMPORTED_SUB_SECTION))
            subs[0].setdefault("photos", []).extend(missing)

    data["gallerySections"] = gallery
    data["photos"] = []
    return data


def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
    """Fill in sections that older documents may lack."""
    if data.get("gallerySections") is None:
        data["gallerySections"] = default_gallery_data()
    if data.get("location") is None:
        data["location"] = default_location_data()
    if data.get("photos") is None:
        data["photos"] = []
    return data


def migrate(value: Any) -> ContentDocument:
    """Upgrade a candidate value into a current-schema document.

    Accepts a raw mapping (wire or attribute names) or an existing
    ``ContentDocument``.

    Raises:
        InvalidFormatError: If the value fails shape validation or the
            migrated data does not validate against the model.
    """
    if isinstance(value, ContentDocument):
        data = value.model_dump(by_alias=True, exclude_none=True)
    elif isinstance(value, Mapping):
        data = _normalize_keys(copy.deepcopy(dict(value)))
    else:
        raise InvalidFormatError(f"Expected a JSON object, got {type(value).__name__}")

    if not is_valid_shape(data):
        raise InvalidFormatError("Content is missing textContent considerations fields or faqs")

    try:
        data = apply_defaults(migrate_gallery(data))
        return ContentDocument.model_validate(data)
    except (AttributeError, TypeError) as exc:
        raise InvalidFormatError(f"Malformed gallery structure: {exc}") from exc
    except ValidationError as exc:
        raise InvalidFormatError(f"Content failed validation: {exc}") from exc


# ── Indirect payload rehydration ──────────────────────────────────────


def is_indirect(ref: str | None) -> bool:
    return isinstance(ref, str) and ref.startswith(INDIRECTION_PREFIX)


def indirection_token(ref: str) -> str:
    return ref[len(INDIRECTION_PREFIX) :]


def collect_tokens(doc: ContentDocument) -> set[str]:
    """Return every indirection token referenced anywhere in the document."""
    refs = [doc.logo_url, doc.favicon_url, doc.text.hero_image_url, doc.location.image_url]
    refs.extend(p.url for p in doc.iter_photos())
    refs.extend(p.url for p in doc.legacy_photos)
    return {indirection_token(r) for r in refs if is_indirect(r)}


@dataclass
class RehydrationResult:
    """Outcome of resolving indirection references in one document."""

    document: ContentDocument
    consumed: set[str] = field(default_factory=set)
    misses: list[MigrationLookupMissError] = field(default_factory=list)

    @property
    def dropped_photo_ids(self) -> list[str]:
        return [m.photo_id for m in self.misses if m.photo_id is not None]


def rehydrate(
    doc: ContentDocument,
    payloads: Mapping[str, str],
    live: ContentDocument | None = None,
) -> RehydrationResult:
    """Replace ``idb:`` references with the payloads they point to.

    Resolution order for a photo: the payload map, then the photo with
    the same id in ``live``.  Unresolved photos are dropped from their
    collection.  Other image fields fall back to the same field of
    ``live`` and are otherwise cleared.
    """
    result = RehydrationResult(document=doc.model_copy(deep=True))
    new = result.document

    live_urls: dict[str, str] = {}
    if live is not None:
        live_urls = {p.id: p.url for p in live.legacy_photos}
        live_urls.update({p.id: p.url for p in live.iter_photos()})

    def resolve(ref: str, fallback: str | None) -> str | None:
        token = indirection_token(ref)
        if token in payloads:
            result.consumed.add(token)
            return payloads[token]
        if fallback and not is_indirect(fallback):
            return fallback
        return None

    def resolve_photos(photos: list[Photo]) -> list[Photo]:
        kept = []
        for photo in photos:
            if is_indirect(photo.url):
                url = resolve(photo.url, live_urls.get(photo.id))
                if url is None:
                    result.misses.append(MigrationLookupMissError(photo.url, photo.id))
                    continue
                photo.url = url
            kept.append(photo)
        return kept

    for section in new.gallery:
        for sub in section.sub_sections:
            sub.photos = resolve_photos(sub.photos)
    new.legacy_photos = resolve_photos(new.legacy_photos)

    def resolve_field(ref: str | None, fallback: str | None) -> str | None:
        if not is_indirect(ref):
            return ref
        url = resolve(ref, fallback)
        if url is None:
            result.misses.append(MigrationLookupMissError(ref))
        return url

    new.logo_url = resolve_field(new.logo_url, live.logo_url if live else None)
    new.favicon_url = resolve_field(new.favicon_url, live.favicon_url if live else None)
    new.text.hero_image_url = (
        resolve_field(new.text.hero_image_url, live.text.hero_image_url if live else None) or ""
    )
    new.location.image_url = (
        resolve_field(new.location.image_url, live.location.image_url if live else None) or ""
    )
    return result
