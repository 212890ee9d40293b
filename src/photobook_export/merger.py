from __future__ import annotations

import io
import logging
from typing import Sequence

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

logger = logging.getLogger(__name__)


class MergeError(ValueError):
    """Raised when the per-page PDFs cannot be combined without losing pages."""


def page_count(document: bytes) -> int:
    return len(PdfReader(io.BytesIO(document)).pages)


def merge_pdfs(documents: Sequence[bytes]) -> bytes:
    """
    Concatenate PDFs in order into a single document.

    A single input is returned as-is, without re-encoding. For several inputs
    every page of every document is appended in order and the final page
    count is checked against the sum of the inputs.

    Raises:
        MergeError: No inputs, an unreadable input, or a page went missing
    """
    if not documents:
        raise MergeError("Nothing to merge: no rendered pages")
    if len(documents) == 1:
        return documents[0]

    writer = PdfWriter()
    expected = 0
    for index, document in enumerate(documents):
        try:
            reader = PdfReader(io.BytesIO(document))
            pages = list(reader.pages)
        except (PyPdfError, ValueError, OSError) as exc:
            raise MergeError(f"Document {index} could not be read: {exc}") from exc
        if not pages:
            raise MergeError(f"Document {index} has no pages")
        for page in pages:
            writer.add_page(page)
        expected += len(pages)

    buffer = io.BytesIO()
    writer.write(buffer)
    merged = buffer.getvalue()

    actual = page_count(merged)
    if actual != expected:
        raise MergeError(f"Merged document has {actual} pages, expected {expected}")
    logger.info("Merged %d documents into %d pages (%d bytes)", len(documents), actual, len(merged))
    return merged
