"""Text extraction for uploaded statements (PDF, CSV, plain text)."""
import csv
import io
import logging
from typing import Optional

import pdfplumber

logger = logging.getLogger(__name__)

PDF_MIME_TYPES = {"application/pdf"}
CSV_MIME_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel"}
TEXT_MIME_TYPES = {"text/plain"}

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class UnsupportedStatementType(ValueError):
    pass


def _extension(filename: Optional[str]) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def extract_pdf_text(data: bytes) -> str:
    pages = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")
    return "\n".join(pages)


def extract_csv_text(data: bytes) -> str:
    decoded = data.decode("utf-8-sig", errors="replace")
    rows = csv.reader(io.StringIO(decoded))
    return "\n".join(" | ".join(cell.strip() for cell in row) for row in rows if row)


def extract_statement_text(data: bytes, filename: Optional[str], content_type: Optional[str]) -> str:
    """
    Return the text content of one uploaded statement file.

    Raises UnsupportedStatementType for anything that is not PDF, CSV or text.
    A PDF that cannot be parsed contributes a marker line instead of failing the
    whole upload, so multi-file uploads still classify what they can.
    """
    ext = _extension(filename)
    content_type = (content_type or "").split(";")[0].strip().lower()

    if content_type in PDF_MIME_TYPES or ext == "pdf":
        try:
            return extract_pdf_text(data)
        except Exception as e:
            logger.warning(f"PDF parsing failed for upload ({len(data)} bytes): {e}")
            return "[PDF parsing failed]"
    if content_type in CSV_MIME_TYPES or ext == "csv":
        return extract_csv_text(data)
    if content_type in TEXT_MIME_TYPES or ext == "txt":
        return data.decode("utf-8", errors="replace")

    raise UnsupportedStatementType(f"Unsupported file type: {filename or content_type or 'unknown'}")
