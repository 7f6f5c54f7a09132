"""Text extraction collaborator.

``PlaceholderTextExtractor`` stands in for a real OCR integration. Only the
``TextExtractor`` interface is relied on by the grading pipeline.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from exam_eval.exceptions import DependencyError

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = {".pdf"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".tiff", ".bmp"}

_IMAGE_TEXT = """Student Answer Paper

Question 1: What is the capital of France?
Answer: Paris is the capital of France. It is located in the northern part of the country.

Question 2: Explain photosynthesis.
Answer: Photosynthesis is the process by which plants convert sunlight into energy using chlorophyll.

Question 3: Solve 2x + 5 = 15
Answer: 2x = 15 - 5 = 10, therefore x = 5"""

_PDF_TEXT = """Student Answer Paper - PDF Format

Question 1: What is machine learning?
Answer: Machine learning is a subset of artificial intelligence that enables computers to learn and make decisions from data without being explicitly programmed.

Question 2: Explain database normalization.
Answer: Database normalization is the process of organizing data in a database to reduce redundancy and improve data integrity."""


class OcrResult(BaseModel):
    text: str
    confidence: float
    language: str = "en"


class TextExtractor(Protocol):
    def extract_text(self, path: Path) -> OcrResult: ...


class PlaceholderTextExtractor:
    """Returns canned text per file type after checking the file exists."""

    def extract_text(self, path: Path) -> OcrResult:
        path = Path(path)
        extension = path.suffix.lower()
        if extension not in PDF_EXTENSIONS | IMAGE_EXTENSIONS:
            raise DependencyError(f"Unsupported file type: {extension}", service="ocr")
        if not path.exists():
            raise DependencyError(f"File not found for OCR processing: {path.name}", service="ocr")

        if extension in PDF_EXTENSIONS:
            return OcrResult(text=_PDF_TEXT, confidence=0.98)
        return OcrResult(text=_IMAGE_TEXT, confidence=0.95)


class PdfTextExtractor:
    """Reads the embedded text layer of PDFs with PyPDF2.

    Scanned PDFs without a text layer and image files are handed to
    ``fallback``.
    """

    def __init__(self, fallback: Optional[TextExtractor] = None):
        self.fallback = fallback or PlaceholderTextExtractor()

    def extract_text(self, path: Path) -> OcrResult:
        path = Path(path)
        if path.suffix.lower() not in PDF_EXTENSIONS:
            return self.fallback.extract_text(path)
        if not path.exists():
            raise DependencyError(f"File not found for OCR processing: {path.name}", service="ocr")

        try:
            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise DependencyError(f"Unreadable PDF: {path.name}", service="ocr") from exc

        text = "\n".join(p.strip() for p in pages if p.strip())
        if not text:
            logger.info("No text layer in %s, using fallback extractor", path.name)
            return self.fallback.extract_text(path)
        return OcrResult(text=text, confidence=1.0)


def build_extractor(backend: str) -> TextExtractor:
    if backend == "pdf":
        return PdfTextExtractor()
    return PlaceholderTextExtractor()
