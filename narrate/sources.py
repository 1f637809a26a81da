"""Read narration source documents as plain text."""

import logging
import os

from narrate.errors import SourceError

logger = logging.getLogger(__name__)

PLAIN_TEXT_EXTENSIONS = (".txt", ".md", ".markdown", "")
DOCUMENT_EXTENSIONS = (".pdf", ".docx")
SUPPORTED_EXTENSIONS = PLAIN_TEXT_EXTENSIONS + DOCUMENT_EXTENSIONS


def _read_pdf(path: str) -> str:
    try:
        from pypdf import PdfReader
    except ModuleNotFoundError as e:
        raise SourceError("PDF input needs pypdf: pip install 'narrate[documents]'") from e

    reader = PdfReader(path)
    pages = [(page.extract_text() or "").strip() for page in reader.pages]
    empty = sum(1 for p in pages if not p)
    if empty:
        logger.warning("%d of %d PDF pages have no extractable text", empty, len(pages))
    return "\n\n".join(pages)


def _read_docx(path: str) -> str:
    try:
        import docx2txt
    except ModuleNotFoundError as e:
        raise SourceError("DOCX input needs docx2txt: pip install 'narrate[documents]'") from e

    return docx2txt.process(path) or ""


def read_source(path: str) -> str:
    """Return the text of a source document, chosen by file extension.

    Plain text and Markdown are read as-is; PDF and DOCX go through their
    extractors. Any other extension raises SourceError.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext in PLAIN_TEXT_EXTENSIONS:
        try:
            with open(path, encoding="utf-8") as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise SourceError(f"{path} is not UTF-8 text: {e}") from e
    if ext == ".pdf":
        return _read_pdf(path)
    if ext == ".docx":
        return _read_docx(path)
    allowed = ", ".join(e for e in SUPPORTED_EXTENSIONS if e)
    raise SourceError(f"Unsupported file type: {ext}. Allowed types: {allowed}")
