"""Ollama client used to structure extracted course text."""
import httpx
from typing import List, Optional
import structlog

from coursemind import config
from coursemind.errors import StructuringError

logger = structlog.get_logger()

STRUCTURE_PROMPT = """You clean up text extracted from course documents (PDF or Word).

Rewrite the text below as well-structured Markdown:
- Restore headings, paragraphs and bullet lists lost during extraction
- Join words and sentences that were split across lines or pages
- Drop page numbers, running headers and footers
- Keep every fact, formula and definition; do not summarize or add content
- Answer in the same language as the text

Respond with the Markdown only."""

# Low temperature keeps the rewrite close to the source text
STRUCTURE_TEMPERATURE = 0.1


class OllamaClient:
    """Structuring service backed by a local Ollama server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Ollama server URL (default: config.OLLAMA_BASE_URL)
            model: Model that rewrites the text (default: config.STRUCTURE_MODEL)
            timeout: Seconds to wait for a rewrite (default: config.OLLAMA_TIMEOUT)
            transport: httpx transport override, e.g. httpx.MockTransport
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or config.STRUCTURE_MODEL
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def structure_content(self, raw_text: str) -> str:
        """Rewrite raw extracted text as clean Markdown.

        Args:
            raw_text: Text produced by the extractor

        Returns:
            Structured text

        Raises:
            StructuringError: If the server is unreachable, answers with an
                error status, or returns nothing
        """
        payload = {
            "model": self.model,
            "stream": False,
            "options": {"temperature": STRUCTURE_TEMPERATURE},
            "messages": [
                {"role": "system", "content": STRUCTURE_PROMPT},
                {"role": "user", "content": raw_text},
            ],
        }

        logger.info("structuring_request", model=self.model, text_length=len(raw_text))

        try:
            async with self._client() as client:
                response = await client.post("/api/chat", json=payload)
                response.raise_for_status()
                reply = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "structuring_http_error",
                model=self.model,
                status_code=e.response.status_code,
            )
            raise StructuringError(f"Ollama request failed: {e}") from e
        except httpx.HTTPError as e:
            logger.error(
                "structuring_unreachable", base_url=self.base_url, error=str(e)
            )
            raise StructuringError(f"Ollama request failed: {e}") from e

        content = (reply.get("message") or {}).get("content", "").strip()
        if not content:
            raise StructuringError("Empty response from Ollama")

        logger.info(
            "structuring_response",
            model=self.model,
            text_length=len(raw_text),
            structured_length=len(content),
        )
        return content

    async def list_models(self) -> List[str]:
        """Names of the models installed on the server.

        Raises:
            httpx.HTTPError: If the server can't be reached
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                return [m["name"] for m in response.json().get("models", [])]
        except httpx.HTTPError as e:
            logger.warning("ollama_tags_unavailable", base_url=self.base_url, error=str(e))
            raise
