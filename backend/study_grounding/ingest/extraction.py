"""Text extraction for uploaded documents."""

from __future__ import annotations

import io
import logging
import re

import fitz
from docx import Document

from study_grounding.core.errors import ExtractionError
from study_grounding.ingest.types import ExtractedText

logger = logging.getLogger(__name__)

_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SPACES_RE = re.compile(r"[ \t]{2,}")

TEXT_ENCODINGS = ("utf-8", "latin-1")


def clean_text(text: str, collapse_spaces: bool = True) -> str:
    """Normalize line endings, squeeze blank lines and runs of spaces, trim."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _BLANK_LINES_RE.sub("\n\n", text)
    if collapse_spaces:
        text = _SPACES_RE.sub(" ", text)
    return text.strip()


def _word_count(text: str) -> int:
    return len(text.split())


class BaseExtractor:
    """Common extractor interface."""

    suffixes: tuple[str, ...] = ()
    mime_markers: tuple[str, ...] = ()

    def can_extract(self, mime_type: str, extension: str) -> bool:
        mime_type = (mime_type or "").lower()
        return extension in self.suffixes or any(marker in mime_type for marker in self.mime_markers)

    def extract(self, data: bytes) -> ExtractedText:  # pragma: no cover - interface
        raise NotImplementedError


class PlainTextExtractor(BaseExtractor):
    suffixes = ("txt", "md", "markdown")
    mime_markers = ("text/",)

    def extract(self, data: bytes) -> ExtractedText:
        text = None
        for encoding in TEXT_ENCODINGS:
            try:
                text = data.decode(encoding)
                break
            except UnicodeDecodeError:
                continue
        if not text or not text.strip():
            raise ExtractionError(
                "Text file is empty or unreadable",
                f"Tried encodings: {', '.join(TEXT_ENCODINGS)}",
            )
        cleaned = clean_text(text, collapse_spaces=False)
        return ExtractedText(text=cleaned, metadata={"word_count": _word_count(cleaned), "encoding": encoding})


class DocxExtractor(BaseExtractor):
    suffixes = ("docx", "doc")
    mime_markers = ("officedocument.wordprocessingml", "msword")

    def extract(self, data: bytes) -> ExtractedText:
        try:
            document = Document(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError("Failed to extract text from DOCX", str(exc)) from exc
        paragraphs = [para.text for para in document.paragraphs]
        cleaned = clean_text("\n".join(paragraphs))
        if not cleaned:
            raise ExtractionError("DOCX contains no extractable text", "The document may be empty or corrupted")
        return ExtractedText(text=cleaned, metadata={"word_count": _word_count(cleaned)})


class PDFExtractor(BaseExtractor):
    suffixes = ("pdf",)
    mime_markers = ("pdf",)

    def extract(self, data: bytes) -> ExtractedText:
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                pages = [page.get_text("text", sort=True) for page in doc]
        except Exception as exc:
            raise ExtractionError("Failed to extract text from PDF", str(exc)) from exc
        cleaned = clean_text("\n\n".join(pages))
        if not cleaned:
            raise ExtractionError(
                "PDF contains no extractable text",
                "The PDF may be scanned or image-based. Try a text-based PDF or a DOCX/TXT export.",
            )
        return ExtractedText(
            text=cleaned,
            metadata={"page_count": len(pages), "word_count": _word_count(cleaned)},
        )


EXTRACTORS: tuple[BaseExtractor, ...] = (PDFExtractor(), DocxExtractor(), PlainTextExtractor())

SUPPORTED_MIME_TYPES = (
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "text/plain",
    "text/markdown",
)
SUPPORTED_EXTENSIONS = ("pdf", "docx", "doc", "txt", "md", "markdown")


def file_extension(file_name: str) -> str:
    return file_name.lower().rsplit(".", 1)[-1] if "." in file_name else ""


def is_supported(mime_type: str, file_name: str) -> bool:
    mime_type = (mime_type or "").lower()
    return any(kind in mime_type for kind in SUPPORTED_MIME_TYPES) or file_extension(file_name) in SUPPORTED_EXTENSIONS


def extract_text(data: bytes, mime_type: str, file_name: str) -> ExtractedText:
    """Pick an extractor by MIME type or extension and return cleaned text.

    Raises :class:`ExtractionError` with a human ``details`` hint when the
    file is unsupported or yields no text.
    """
    extension = file_extension(file_name)
    for extractor in EXTRACTORS:
        if extractor.can_extract(mime_type, extension):
            result = extractor.extract(data)
            logger.debug(
                "Extracted %s characters from %s",
                len(result.text),
                file_name,
                extra={"ctx_extractor": type(extractor).__name__},
            )
            return result
    raise ExtractionError("Unsupported file type", f"File type: {mime_type}, Extension: {extension}")


__all__ = [
    "BaseExtractor",
    "PlainTextExtractor",
    "DocxExtractor",
    "PDFExtractor",
    "SUPPORTED_MIME_TYPES",
    "SUPPORTED_EXTENSIONS",
    "clean_text",
    "extract_text",
    "is_supported",
]
