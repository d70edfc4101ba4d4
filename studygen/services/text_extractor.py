"""
Plain-text extraction for uploaded study documents (PDF, DOCX, plain text).
"""
from io import BytesIO
from pathlib import Path
from typing import Optional

import PyPDF2
from docx import Document
from PyPDF2.errors import PdfReadError

from studygen.exceptions import TextExtractionError


def extract_pdf_text(data: bytes) -> str:
    try:
        reader = PyPDF2.PdfReader(BytesIO(data))
        # Pages with no text layer return "" or None
        return "\n".join((page.extract_text() or "") for page in reader.pages)
    except (PdfReadError, ValueError, KeyError) as e:
        raise TextExtractionError(f"Unable to read PDF: {e}") from e


def extract_docx_text(data: bytes) -> str:
    try:
        doc = Document(BytesIO(data))
    except Exception as e:  # python-docx surfaces zip and XML errors unwrapped
        raise TextExtractionError(f"Unable to read DOCX: {e}") from e
    return "\n".join(para.text for para in doc.paragraphs if para.text.strip())


def extract_text(data: bytes, filename: Optional[str] = None) -> str:
    """Extract and trim document text. Raises TextExtractionError when nothing is found."""
    suffix = Path(filename).suffix.lower() if filename else ".pdf"

    if suffix == ".docx":
        text = extract_docx_text(data)
    elif suffix in (".txt", ".md"):
        text = data.decode("utf-8", errors="replace")
    else:
        text = extract_pdf_text(data)

    text = text.strip()
    if not text:
        raise TextExtractionError("Unable to extract text from document")
    return text
