"""Document loading — thin wrapper around LangChain's PDF loader."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from langchain_community.document_loaders import PyPDFLoader

from berkshire_rag.errors import ExtractionError, SourceDirectoryError
from berkshire_rag.ingestion.models import SourceDocument

logger = logging.getLogger(__name__)

_YEAR_RE = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")


@dataclass(frozen=True)
class PdfExtraction:
    text: str
    page_count: int


def discover_pdfs(source_dir: str | Path) -> list[Path]:
    """Return the PDF files directly inside *source_dir*, sorted by name.

    Raises
    ------
    SourceDirectoryError
        If the directory does not exist or contains no PDF files.
    """
    root = Path(source_dir)
    if not root.is_dir():
        raise SourceDirectoryError(f"Source directory not found: {root}")

    files = sorted(p for p in root.iterdir() if p.is_file() and p.suffix.lower() == ".pdf")
    if not files:
        raise SourceDirectoryError(f"No PDF files found in {root}")

    logger.info("Found %d PDF file(s) in %s: %s", len(files), root, ", ".join(p.name for p in files))
    return files


def parse_year(file_name: str) -> str:
    """Derive the year label from a letter's file name.

    ``"2019.pdf"`` and ``"berkshire_letter_2019.pdf"`` both give ``"2019"``;
    names without a recognisable year fall back to the bare stem.
    """
    stem = Path(file_name).stem
    match = _YEAR_RE.search(stem)
    return match.group(0) if match else stem


def extract_pdf(path: str | Path) -> PdfExtraction:
    """Extract the text of every page of *path*.

    Raises
    ------
    ExtractionError
        On any failure to open or parse the file.
    """
    path = Path(path)
    try:
        pages = PyPDFLoader(str(path)).load()
    except Exception as exc:
        raise ExtractionError(path.name, f"could not extract text: {exc}") from exc

    if not pages:
        raise ExtractionError(path.name, "PDF contains no pages")

    text = "\n\n".join(page.page_content for page in pages)
    return PdfExtraction(text=text, page_count=len(pages))


def load_document(path: str | Path) -> SourceDocument:
    """Load one letter as a :class:`SourceDocument`."""
    path = Path(path)
    extraction = extract_pdf(path)
    if not extraction.text.strip():
        raise ExtractionError(path.name, "no extractable text (scanned PDF?)")

    return SourceDocument(
        file_name=path.name,
        year=parse_year(path.name),
        raw_text=extraction.text,
        page_count=extraction.page_count,
    )
