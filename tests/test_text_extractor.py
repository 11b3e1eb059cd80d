"""Tests for TextExtractor (PDF, DOCX, TXT)."""
import io

import fitz
import pytest
from docx import Document as DocxDocument

from app.models.database_models import DocumentType
from app.services.errors import (
    ExtractionError,
    FileTooLargeError,
    PageLimitError,
    UnsupportedTypeError,
)
from app.services.text_extractor import TextExtractor


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_pdf(pages: int, text: str = "Chlorophyll absorbs light in the leaf.") -> bytes:
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page()
        page.insert_text((72, 72), f"{text} Page {i + 1}.")
    data = doc.tobytes()
    doc.close()
    return data


def _make_docx(paragraphs, table_rows=()) -> bytes:
    doc = DocxDocument()
    for p in paragraphs:
        doc.add_paragraph(p)
    if table_rows:
        table = doc.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for r, row in enumerate(table_rows):
            for c, value in enumerate(row):
                table.cell(r, c).text = value
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Type detection
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "filename,expected",
    [("notes.pdf", DocumentType.PDF), ("NOTES.TXT", DocumentType.TXT), ("a.b.docx", DocumentType.DOCX)],
)
def test_detect_type(filename, expected):
    assert TextExtractor.detect_type(filename) is expected


@pytest.mark.asyncio
async def test_unsupported_extension_rejected():
    with pytest.raises(UnsupportedTypeError):
        await TextExtractor().extract(b"MZ\x90\x00", "setup.exe")


@pytest.mark.asyncio
async def test_missing_extension_rejected():
    with pytest.raises(UnsupportedTypeError):
        await TextExtractor().extract(b"hello", "README")


# ---------------------------------------------------------------------------
# TXT
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_txt_extraction_and_metadata():
    data = "The cell is the basic unit of life.\n".encode("utf-8")
    result = await TextExtractor().extract(data, "biology.txt")

    assert result.file_type is DocumentType.TXT
    assert result.text == "The cell is the basic unit of life."
    assert result.metadata["file_size"] == len(data)
    assert result.metadata["word_count"] == 8
    assert result.metadata["page_count"] is None


@pytest.mark.asyncio
async def test_txt_with_bom_is_decoded():
    result = await TextExtractor().extract("\ufeffHello world".encode("utf-8"), "bom.txt")
    assert result.text == "Hello world"


@pytest.mark.asyncio
async def test_txt_invalid_utf8_raises_extraction_error():
    with pytest.raises(ExtractionError):
        await TextExtractor().extract(b"\xff\xfe\xfa\x00bad", "latin.txt")


@pytest.mark.asyncio
async def test_blank_txt_raises_extraction_error():
    with pytest.raises(ExtractionError, match="no extractable text"):
        await TextExtractor().extract(b"   \n\n  ", "blank.txt")


@pytest.mark.asyncio
async def test_oversized_file_rejected():
    extractor = TextExtractor(max_file_size=16)
    with pytest.raises(FileTooLargeError) as exc_info:
        await extractor.extract(b"x" * 17, "big.txt")
    assert exc_info.value.status_code == 413


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_pdf_extraction_records_page_count():
    result = await TextExtractor().extract(_make_pdf(2), "leaf.pdf")

    assert result.file_type is DocumentType.PDF
    assert "Chlorophyll absorbs light" in result.text
    assert "Page 2" in result.text
    assert result.metadata["page_count"] == 2


@pytest.mark.asyncio
async def test_pdf_at_page_limit_is_accepted():
    result = await TextExtractor().extract(_make_pdf(10), "ten.pdf")
    assert result.metadata["page_count"] == 10


@pytest.mark.asyncio
async def test_pdf_over_page_limit_raises():
    with pytest.raises(PageLimitError):
        await TextExtractor().extract(_make_pdf(11), "eleven.pdf")


@pytest.mark.asyncio
async def test_corrupt_pdf_raises_extraction_error():
    with pytest.raises(ExtractionError):
        await TextExtractor().extract(b"%PDF-1.4 this is not really a pdf", "broken.pdf")


@pytest.mark.asyncio
async def test_pdf_without_text_raises_extraction_error():
    doc = fitz.open()
    doc.new_page()
    data = doc.tobytes()
    doc.close()
    with pytest.raises(ExtractionError):
        await TextExtractor().extract(data, "blank.pdf")


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_docx_paragraphs_and_tables():
    data = _make_docx(
        ["Mitochondria produce ATP.", "", "Ribosomes build proteins."],
        table_rows=[("Organelle", "Role"), ("Nucleus", "Stores DNA")],
    )
    result = await TextExtractor().extract(data, "cell.docx")

    assert result.file_type is DocumentType.DOCX
    assert "Mitochondria produce ATP." in result.text
    assert "Ribosomes build proteins." in result.text
    assert "Nucleus | Stores DNA" in result.text


@pytest.mark.asyncio
async def test_corrupt_docx_raises_extraction_error():
    with pytest.raises(ExtractionError):
        await TextExtractor().extract(b"PK\x03\x04 not a zip", "broken.docx")
