"""Text extraction from uploaded course documents.

Handles:
- PDF (pdfplumber, falling back to pypdf)
- Word documents (python-docx)
- Markdown with YAML front matter
- Plain text
"""
import re
from pathlib import Path
from typing import Any, Dict, Tuple
import structlog
import yaml

from coursemind.errors import ExtractionError

logger = structlog.get_logger()

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MARKDOWN = "text/markdown"
PLAIN_TEXT = "text/plain"

SUPPORTED_MEDIA_TYPES = (PDF, DOCX, MARKDOWN, PLAIN_TEXT)


def normalize_text(text: str) -> str:
    """Normalize line endings and collapse runs of blank lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return re.sub(r"\n{3,}", "\n\n", text).strip()


class DocumentExtractor:
    """Extracts raw text from a stored file based on its media type."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    def extract(self, file_path: str, media_type: str) -> str:
        """Extract text from a document.

        Args:
            file_path: Location of the stored file
            media_type: MIME type recorded at upload

        Returns:
            Normalized text

        Raises:
            ExtractionError: If the file is missing, unsupported or unreadable
        """
        path = Path(file_path)
        if not path.is_file():
            raise ExtractionError(f"File not found: {file_path}")

        handlers = {
            PDF: self._extract_pdf,
            DOCX: self._extract_docx,
            MARKDOWN: self._extract_markdown,
            PLAIN_TEXT: self._extract_plain,
        }
        handler = handlers.get(media_type)
        if handler is None:
            raise ExtractionError(f"Unsupported file type: {media_type}")

        try:
            text = handler(path)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error(
                "document_extraction_failed",
                path=str(path),
                media_type=media_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExtractionError(f"Could not read {path.name}: {e}") from e

        text = normalize_text(text)

        logger.info(
            "document_extracted",
            path=str(path),
            media_type=media_type,
            content_length=len(text),
        )
        return text

    def _extract_pdf(self, path: Path) -> str:
        text = self._extract_pdf_pdfplumber(path)
        if len(text.strip()) < 50:
            logger.debug("pdfplumber_text_sparse_trying_pypdf", path=str(path))
            fallback = self._extract_pdf_pypdf(path)
            if len(fallback.strip()) > len(text.strip()):
                text = fallback
        return text

    def _extract_pdf_pdfplumber(self, path: Path) -> str:
        import pdfplumber

        with pdfplumber.open(str(path)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
        return "\n\n".join(page for page in pages if page.strip())

    def _extract_pdf_pypdf(self, path: Path) -> str:
        from pypdf import PdfReader

        reader = PdfReader(str(path))
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n\n".join(page for page in pages if page.strip())

    def _extract_docx(self, path: Path) -> str:
        import docx

        document = docx.Document(str(path))
        return "\n".join(paragraph.text for paragraph in document.paragraphs)

    def _extract_markdown(self, path: Path) -> str:
        content = self._read_text(path)
        _, body = self.split_frontmatter(content)
        return body

    def _extract_plain(self, path: Path) -> str:
        return self._read_text(path)

    def _read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.warning("text_not_utf8_falling_back_to_latin1", path=str(path))
            return path.read_text(encoding="latin-1")

    def split_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Args:
            content: Full markdown content

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = {}

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end():]
