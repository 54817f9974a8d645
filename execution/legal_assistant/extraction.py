"""
Text Extraction for Uploaded Documents

Thin adapter over the extraction libraries: PyMuPDF4LLM for PDFs,
python-docx for Word files, and plain decoding for text/markdown.
Every failure surfaces as ExtractionFailure so the ingestion pipeline can
record it on the document.
"""

import io
import logging

from .config import PDF_MIME, DOCX_MIME, TEXT_MIME, MARKDOWN_MIME
from .errors import ExtractionFailure, UnsupportedFileType

logger = logging.getLogger(__name__)


class TextExtractor:
    """Extracts plain text from raw upload bytes based on MIME type."""

    def extract(self, content: bytes, mime_type: str) -> str:
        """
        Extract text from a file.

        Args:
            content: Raw file bytes
            mime_type: MIME type declared at upload

        Returns:
            Extracted text (may be empty or whitespace for scanned files)

        Raises:
            UnsupportedFileType: For MIME types with no extractor
            ExtractionFailure: When the file cannot be read
        """
        if mime_type == PDF_MIME:
            text = self._extract_pdf(content)
        elif mime_type == DOCX_MIME:
            text = self._extract_docx(content)
        elif mime_type in (TEXT_MIME, MARKDOWN_MIME):
            text = self._decode_text(content)
        else:
            raise UnsupportedFileType(mime_type)

        logger.info(f"Extracted {len(text)} characters ({mime_type})")
        return text

    def _extract_pdf(self, content: bytes) -> str:
        import fitz  # PyMuPDF
        import pymupdf4llm

        try:
            with fitz.open(stream=content, filetype="pdf") as doc:
                return pymupdf4llm.to_markdown(doc)
        except Exception as e:
            raise ExtractionFailure(f"PDF extraction failed: {e}") from e

    def _extract_docx(self, content: bytes) -> str:
        from docx import Document as DocxDocument

        try:
            doc = DocxDocument(io.BytesIO(content))
        except Exception as e:
            raise ExtractionFailure(f"DOCX extraction failed: {e}") from e
        return "\n\n".join(p.text for p in doc.paragraphs if p.text.strip())

    def _decode_text(self, content: bytes) -> str:
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("Text upload is not valid UTF-8, decoding as Latin-1")
            return content.decode("latin-1")
