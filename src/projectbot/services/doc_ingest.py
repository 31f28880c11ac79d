from __future__ import annotations

from typing import List, Tuple
import io
import logging

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from pypdf import PdfReader


logger = logging.getLogger("projectbot.services.doc_ingest")

# ASCII record separator; never produced by the extractors below.
CHUNK_SEPARATOR = "\x1e"
SPREADSHEET_PREFIX = "SPREADSHEET DATA: "
TEXT_SECTION_LINES = 50
SHORT_TEXT_LINES = 10

PDF_TYPES = {"application/pdf"}
SPREADSHEET_TYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
TEXT_TYPES = {"text/plain", "text/markdown", "text/csv"}
TEXT_SUFFIXES = (".txt", ".md", ".csv")


class UnsupportedDocumentError(ValueError):
    pass


def detect_kind(filename: str, content_type: str | None) -> str:
    name = (filename or "").lower()
    ctype = (content_type or "").lower()
    if ctype in PDF_TYPES or name.endswith(".pdf"):
        return "pdf"
    if ctype in SPREADSHEET_TYPES or name.endswith((".xlsx", ".xlsm")):
        return "spreadsheet"
    if ctype in TEXT_TYPES or name.endswith(TEXT_SUFFIXES):
        return "text"
    raise UnsupportedDocumentError(f"Unsupported file type: {content_type or filename}")


def extract_pdf(data: bytes) -> List[str]:
    reader = PdfReader(io.BytesIO(data))
    chunks: List[str] = []
    for index, page in enumerate(reader.pages, start=1):
        text = (page.extract_text() or "").strip()
        if text:
            chunks.append(f"[PDF Page {index}] {text}")
    return chunks


def extract_spreadsheet(data: bytes) -> List[str]:
    workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    sheets: List[str] = []
    try:
        for worksheet in workbook.worksheets:
            rows: List[str] = []
            for row_number, row in enumerate(worksheet.iter_rows(values_only=True), start=1):
                cells = [
                    f"{get_column_letter(col)}{row_number}: {value}"
                    for col, value in enumerate(row, start=1)
                    if value is not None and str(value).strip() != ""
                ]
                if cells:
                    rows.append(" | ".join(cells))
            if rows:
                sheets.append(f"[Excel Sheet: {worksheet.title}]\n" + "\n".join(rows))
    finally:
        workbook.close()
    return sheets


def extract_text(data: bytes) -> List[str]:
    content = data.decode("utf-8", errors="replace")
    lines = content.splitlines()
    if len(lines) <= SHORT_TEXT_LINES:
        return [f"[Text File] {content}"]
    chunks: List[str] = []
    for start in range(0, len(lines), TEXT_SECTION_LINES):
        section = lines[start:start + TEXT_SECTION_LINES]
        body = "\n".join(f"Line {start + i + 1}: {line}" for i, line in enumerate(section))
        chunks.append(f"[Text File Section {start // TEXT_SECTION_LINES + 1}]\n{body}")
    return chunks


def extract_chunks(filename: str, content_type: str | None, data: bytes) -> Tuple[str, List[str]]:
    """Parse an upload into context chunks tagged with their origin.

    Returns ``(kind, chunks)``. Spreadsheet chunks lead with
    ``SPREADSHEET DATA:`` so the default prompt can single them out.
    """
    kind = detect_kind(filename, content_type)
    if kind == "pdf":
        raw = extract_pdf(data)
    elif kind == "spreadsheet":
        raw = extract_spreadsheet(data)
    else:
        raw = extract_text(data)
    tagged: List[str] = []
    for chunk in raw:
        entry = f"[From {filename}] {chunk}"
        if kind == "spreadsheet":
            entry = SPREADSHEET_PREFIX + entry
        tagged.append(entry)
    logger.info("document_parsed name=%s kind=%s chunks=%s", filename, kind, len(tagged))
    return kind, tagged


def join_chunks(chunks: List[str]) -> str:
    return CHUNK_SEPARATOR.join(chunks)


def split_chunks(content: str) -> List[str]:
    return [c for c in (content or "").split(CHUNK_SEPARATOR) if c.strip()]
