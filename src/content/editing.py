"""Editing helpers for the content document.

Each helper returns a modified deep copy and leaves its input untouched;
the caller hands the result to ``ContentSession.update``.  Unknown ids
raise ``KeyError``.
"""

from __future__ import annotations

import base64

from villacms.content.models import (
    FAQ,
    ContentDocument,
    GallerySection,
    GallerySubSection,
    LocationContent,
    Photo,
    new_id,
)


def embed_image(data: bytes, mime_type: str) -> str:
    """Encode raw image bytes as a ``data:`` URL."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _find_section(doc: ContentDocument, section_id: str) -> GallerySection:
    for section in doc.gallery:
        if section.id == section_id:
            return section
    raise KeyError(section_id)


def _find_sub_section(doc: ContentDocument, section_id: str, sub_id: str) -> GallerySubSection:
    for sub in _find_section(doc, section_id).sub_sections:
        if sub.id == sub_id:
            return sub
    raise KeyError(sub_id)


def _locate_photo(doc: ContentDocument, photo_id: str) -> tuple[GallerySubSection, int]:
    for section in doc.gallery:
        for sub in section.sub_sections:
            for index, photo in enumerate(sub.photos):
                if photo.id == photo_id:
                    return sub, index
    raise KeyError(photo_id)


# ── FAQs ─────────────────────────────────────────────────────────────


def add_faq(doc: ContentDocument, question: str, answer: str) -> ContentDocument:
    new = doc.model_copy(deep=True)
    new.faqs.append(FAQ(id=new_id(), question=question, answer=answer))
    return new


def update_faq(
    doc: ContentDocument,
    faq_id: str,
    *,
    question: str | None = None,
    answer: str | None = None,
) -> ContentDocument:
    new = doc.model_copy(deep=True)
    for faq in new.faqs:
        if faq.id == faq_id:
            if question is not None:
                faq.question = question
            if answer is not None:
                faq.answer = answer
            return new
    raise KeyError(faq_id)


def delete_faq(doc: ContentDocument, faq_id: str) -> ContentDocument:
    new = doc.model_copy(deep=True)
    remaining = [f for f in new.faqs if f.id != faq_id]
    if len(remaining) == len(new.faqs):
        raise KeyError(faq_id)
    new.faqs = remaining
    return new


# ── Gallery ──────────────────────────────────────────────────────────


def add_section(doc: ContentDocument, title: str) -> ContentDocument:
    new = doc.model_copy(deep=True)
    new.gallery.append(GallerySection(id=new_id(), title=title))
    return new


def add_sub_section(doc: ContentDocument, section_id: str, title: str) -> ContentDocument:
    new = doc.model_copy(deep=True)
    _find_section(new, section_id).sub_sections.append(GallerySubSection(id=new_id(), title=title))
    return new


def delete_sub_section(doc: ContentDocument, section_id: str, sub_id: str) -> ContentDocument:
    """Remove a sub-section together with every photo inside it."""
    new = doc.model_copy(deep=True)
    section = _find_section(new, section_id)
    remaining = [s for s in section.sub_sections if s.id != sub_id]
    if len(remaining) == len(section.sub_sections):
        raise KeyError(sub_id)
    section.sub_sections = remaining
    return new


def rename_section(doc: ContentDocument, section_id: str, title: str) -> ContentDocument:
    new = doc.model_copy(deep=True)
    _find_section(new, section_id).title = title
    return new


def rename_sub_section(doc: ContentDocument, section_id: str, sub_id: str, title: str) -> ContentDocument:
    new = doc.model_copy(deep=True)
    _find_sub_section(new, section_id, sub_id).title = title
    return new


def move_section(doc: ContentDocument, section_id: str, position: int) -> ContentDocument:
    """Move a gallery section to ``position`` in the section list."""
    new = doc.model_copy(deep=True)
    section = _find_section(new, section_id)
    new.gallery.remove(section)
    new.gallery.insert(position, section)
    return new


def move_sub_section(doc: ContentDocument, section_id: str, sub_id: str, position: int) -> ContentDocument:
    """Reorder a sub-section within its own section."""
    new = doc.model_copy(deep=True)
    section = _find_section(new, section_id)
    sub = _find_sub_section(new, section_id, sub_id)
    section.sub_sections.remove(sub)
    section.sub_sections.insert(position, sub)
    return new


def add_photo(
    doc: ContentDocument,
    section_id: str,
    sub_id: str,
    url: str,
    *,
    caption: str = "New Image",
    description: str = "",
) -> tuple[ContentDocument, str]:
    """Append a photo and return the new document with the photo's id."""
    new = doc.model_copy(deep=True)
    photo = Photo(id=new_id(), url=url, caption=caption, description=description)
    _find_sub_section(new, section_id, sub_id).photos.append(photo)
    return new, photo.id


def update_photo(
    doc: ContentDocument,
    photo_id: str,
    *,
    caption: str | None = None,
    description: str | None = None,
    url: str | None = None,
) -> ContentDocument:
    new = doc.model_copy(deep=True)
    sub, index = _locate_photo(new, photo_id)
    photo = sub.photos[index]
    if caption is not None:
        photo.caption = caption
    if description is not None:
        photo.description = description
    if url is not None:
        photo.url = url
    return new


def delete_photo(doc: ContentDocument, photo_id: str) -> ContentDocument:
    new = doc.model_copy(deep=True)
    sub, index = _locate_photo(new, photo_id)
    del sub.photos[index]
    return new


def move_photo(
    doc: ContentDocument,
    photo_id: str,
    section_id: str,
    sub_id: str,
    *,
    position: int | None = None,
) -> ContentDocument:
    """Move a photo into another (or the same) sub-section.

    ``position`` is the index in the target list; None appends.
    """
    new = doc.model_copy(deep=True)
    target = _find_sub_section(new, section_id, sub_id)
    source, index = _locate_photo(new, photo_id)
    photo = source.photos.pop(index)
    if position is None:
        target.photos.append(photo)
    else:
        target.photos.insert(position, photo)
    return new


# ── Singletons ───────────────────────────────────────────────────────


def set_location(doc: ContentDocument, location: LocationContent) -> ContentDocument:
    new = doc.model_copy(deep=True)
    new.location = location.model_copy(deep=True)
    return new


def set_text(doc: ContentDocument, **fields: str) -> ContentDocument:
    """Replace named copy fields, e.g. ``set_text(doc, hero_title="...")``."""
    new = doc.model_copy(deep=True)
    for name, value in fields.items():
        if name == "features" or name not in type(new.text).model_fields:
            raise KeyError(name)
        setattr(new.text, name, value)
    return new


def update_feature(
    doc: ContentDocument,
    feature_id: str,
    *,
    name: str | None = None,
    detail: str | None = None,
) -> ContentDocument:
    new = doc.model_copy(deep=True)
    for feature in new.text.features:
        if feature.id == feature_id:
            if name is not None:
                feature.name = name
            if detail is not None:
                feature.detail = detail
            return new
    raise KeyError(feature_id)


def set_branding(
    doc: ContentDocument,
    *,
    logo_url: str | None = None,
    favicon_url: str | None = None,
) -> ContentDocument:
    new = doc.model_copy(deep=True)
    if logo_url is not None:
        new.logo_url = logo_url
    if favicon_url is not None:
        new.favicon_url = favicon_url
    return new
