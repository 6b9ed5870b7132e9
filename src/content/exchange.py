"""Export and import of the content document as a portable JSON file.

The export file has the same shape as the published snapshot; placing
it where the snapshot is served from publishes it.
"""

from __future__ import annotations

import json
import logging

from villacms.content.migration import is_valid_shape, migrate, strip_deprecated
from villacms.content.models import ContentDocument, serialize
from villacms.errors import InvalidFormatError

logger = logging.getLogger(__name__)

EXPORT_FILENAME = "villa-content.json"


def export_document(doc: ContentDocument) -> bytes:
    """Serialize a document to indented UTF-8 JSON."""
    return serialize(doc, indent=2).encode("utf-8")


def import_document(data: bytes | str) -> ContentDocument:
    """Parse and upgrade an uploaded content file.

    Retired fields are removed before validation.

    Raises:
        InvalidFormatError: The file is not JSON or not a content document.
    """
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        parsed = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidFormatError(f"Import file is not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict) or not is_valid_shape(parsed):
        raise InvalidFormatError(
            "Invalid content file format. Please upload a file exported from this site."
        )
    doc = migrate(strip_deprecated(parsed))
    logger.debug("Imported document with %d FAQs", len(doc.faqs))
    return doc
