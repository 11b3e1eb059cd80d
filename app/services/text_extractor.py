"""
Text extraction for uploaded PDF, DOCX and TXT files.

Works on the raw upload bytes; nothing touches the disk.  Returns an
ExtractedText with the plain text plus metadata (page_count, file_size,
word_count, char_count).  Every failure is raised as one of the
input-rejection errors so the upload handler can refuse the file before
any Document row exists.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from app.config import settings
from app.models.database_models import DocumentType
from app.services.errors import (
    ExtractionError,
    FileTooLargeError,
    PageLimitError,
    UnsupportedTypeError,
)
from app.utils.helpers import count_words

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ExtractedText:
    """
    Output of the TextExtractor.

    Attributes:
        text:      Plain text of the whole document.
        file_type: Detected DocumentType.
        metadata:  Dict with keys: file_name, file_size, page_count,
                   word_count, char_count.
    """

    text: str
    file_type: DocumentType
    metadata: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class TextExtractor:
    """Converts raw upload bytes into plain text by declared file type."""

    def __init__(
        self,
        max_file_size: Optional[int] = None,
        max_pdf_pages: Optional[int] = None,
    ) -> None:
        self.max_file_size = max_file_size or settings.MAX_FILE_SIZE
        self.max_pdf_pages = max_pdf_pages or settings.MAX_PDF_PAGES

    @staticmethod
    def detect_type(filename: str) -> DocumentType:
        """
        Map a file name's extension onto a DocumentType.

        Raises:
            UnsupportedTypeError: extension is not pdf, txt or docx.
        """
        ext = PurePath(filename or "").suffix.lower().lstrip(".")
        try:
            return DocumentType(ext)
        except ValueError:
            raise UnsupportedTypeError(
                f"Unsupported file type '.{ext}'. Only PDF, TXT, and DOCX files are allowed."
                if ext
                else "Upload must have a .pdf, .txt or .docx extension."
            )

    async def extract(self, data: bytes, filename: str) -> ExtractedText:
        """
        Extract plain text from *data*.

        Args:
            data:     Raw file bytes.
            filename: Declared file name; only its extension is used.

        Returns:
            ExtractedText with text and metadata.

        Raises:
            UnsupportedTypeError, FileTooLargeError, PageLimitError,
            ExtractionError
        """
        file_type = self.detect_type(filename)

        if len(data) > self.max_file_size:
            raise FileTooLargeError(
                f"File exceeds the {self.max_file_size // (1024 * 1024)} MB size limit."
            )

        page_count: Optional[int] = None
        if file_type is DocumentType.PDF:
            text, page_count = self._extract_pdf(data)
        elif file_type is DocumentType.DOCX:
            text = self._extract_docx(data)
        else:
            text = self._extract_txt(data)

        text = text.strip()
        if not text:
            raise ExtractionError("Document contains no extractable text.")

        metadata: Dict[str, Any] = {
            "file_name": filename,
            "file_size": len(data),
            "page_count": page_count,
            "word_count": count_words(text),
            "char_count": len(text),
        }
        logger.info(
            "Extracted %d chars (%d words) from %r",
            metadata["char_count"],
            metadata["word_count"],
            filename,
        )
        return ExtractedText(text=text, file_type=file_type, metadata=metadata)

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    def _extract_pdf(self, data: bytes) -> tuple:
        """Return (text, page_count); the page limit is checked before text extraction."""
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(
                "Failed to process PDF file. Please ensure it is not encrypted or corrupted."
            ) from exc

        try:
            if doc.needs_pass:
                raise ExtractionError("PDF is password-protected. Please provide an unlocked copy.")

            page_count = doc.page_count
            if page_count > self.max_pdf_pages:
                raise PageLimitError(
                    f"PDF files must be {self.max_pdf_pages} pages or less "
                    f"(got {page_count})."
                )

            pages: List[str] = []
            for page in doc:
                pages.append(page.get_text("text"))
        except (ExtractionError, PageLimitError):
            raise
        except Exception as exc:
            raise ExtractionError(f"Failed to read PDF text: {exc}") from exc
        finally:
            doc.close()

        return "\n\n".join(p.strip() for p in pages if p.strip()), page_count

    # ------------------------------------------------------------------
    # DOCX
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_docx(data: bytes) -> str:
        """Raw paragraph and table text from a DOCX file."""
        try:
            doc = DocxDocument(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError(
                "Failed to process DOCX file. Please ensure the file is not corrupted."
            ) from exc

        parts: List[str] = [p.text.strip() for p in doc.paragraphs if p.text.strip()]

        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))

        return "\n\n".join(parts)

    # ------------------------------------------------------------------
    # TXT
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_txt(data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ExtractionError("Text files must be UTF-8 encoded.") from exc
