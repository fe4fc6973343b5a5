"""
Load local files into Documents.

- .md/.markdown -> markdown
- .html/.htm -> html (preprocessed later by the chunker)
- .txt -> txt
- .pdf -> pdf, text extracted with pdfplumber, page count recorded
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional

from docatom.knowledge_base.models import DocFormat, Document

logger = logging.getLogger(__name__)

EXTENSION_FORMATS = {
    ".md": DocFormat.MARKDOWN,
    ".markdown": DocFormat.MARKDOWN,
    ".html": DocFormat.HTML,
    ".htm": DocFormat.HTML,
    ".txt": DocFormat.TXT,
    ".text": DocFormat.TXT,
    ".pdf": DocFormat.PDF,
}


def _sanitize_text(text: str) -> str:
    """Remove null bytes, which PostgreSQL rejects in text columns."""
    if not text:
        return text
    return text.replace('\x00', '')


def detect_format(path: Path) -> DocFormat:
    fmt = EXTENSION_FORMATS.get(path.suffix.lower())
    if fmt is None:
        raise ValueError(f"Unsupported file type: {path.suffix or path.name}")
    return fmt


def document_id_for(path: Path) -> str:
    """Stable id from the resolved path."""
    return hashlib.sha256(str(path.resolve()).encode()).hexdigest()[:32]


def extract_pdf_text(path: Path) -> tuple[str, int]:
    """Return (text, page count). Pages that fail to extract are skipped."""
    import pdfplumber

    pages: list[str] = []
    with pdfplumber.open(path) as pdf:
        total_pages = len(pdf.pages)
        logger.info(f"Processing PDF with {total_pages} pages: {path.name}")
        for page_num, page in enumerate(pdf.pages, start=1):
            try:
                page_text = _sanitize_text(page.extract_text() or "")
            except Exception as e:
                logger.warning(f"Error extracting text from page {page_num}: {e}")
                continue
            if page_text.strip():
                pages.append(page_text)
    return "\n\n".join(pages), total_pages


def load_document(
    file_path: str | Path,
    source_id: Optional[str] = None,
    title: Optional[str] = None,
) -> Document:
    """Read a file into a Document.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the extension is not supported
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    fmt = detect_format(path)
    metadata: dict = {"format": fmt.value, "url": path.resolve().as_uri()}
    if source_id:
        metadata["sourceId"] = source_id

    if fmt == DocFormat.PDF:
        content, numpages = extract_pdf_text(path)
        metadata["numpages"] = numpages or None
    else:
        content = _sanitize_text(path.read_text(encoding="utf-8", errors="replace"))

    return Document(
        id=document_id_for(path),
        title=title or path.stem,
        content=content,
        format=fmt,
        metadata=metadata,
    )
