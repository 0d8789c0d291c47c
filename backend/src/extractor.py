"""Extraction strategies turning a navigated page into html, text or markdown.

The markdown capability is resolved once when the extractor registry is built
(see `build_extractors`). If markdownify is not installed, the ``markdown``
slot holds the text strategy, and results report ``text`` as the format
actually produced.
"""
import importlib.util
from typing import Dict, Optional

from .logging_setup import logger
from .errors import ExtractionError
from .models import ContentFormat
from .utils import clean_text

# Runs in the page: strip non-visible subtrees from a clone of <body> and read its text
VISIBLE_TEXT_SCRIPT = """() => {
  const clone = document.body ? document.body.cloneNode(true) : null;
  if (!clone) return '';
  clone.querySelectorAll('script,style,noscript,iframe').forEach(n => n.remove());
  return clone.innerText || '';
}"""


class HtmlExtractor:
    name = ContentFormat.HTML.value

    async def extract(self, page) -> str:
        try:
            return await page.content()
        except Exception as e:
            raise ExtractionError(f"Failed to read page markup: {e}") from e


class TextExtractor:
    name = ContentFormat.TEXT.value

    async def extract(self, page) -> str:
        try:
            text = await page.evaluate(VISIBLE_TEXT_SCRIPT)
        except Exception as e:
            raise ExtractionError(f"Failed to read page text: {e}") from e
        return clean_text(text or "")


class MarkdownExtractor:
    name = ContentFormat.MARKDOWN.value

    def __init__(self):
        from markdownify import markdownify
        self._convert = markdownify

    def convert(self, html: str) -> str:
        return self._convert(html, heading_style="ATX").strip()

    async def extract(self, page) -> str:
        try:
            html = await page.content()
        except Exception as e:
            raise ExtractionError(f"Failed to read page markup: {e}") from e
        try:
            return self.convert(html)
        except Exception as e:
            raise ExtractionError(f"Markdown conversion failed: {e}") from e


def markdown_available() -> bool:
    return importlib.util.find_spec("markdownify") is not None


def build_extractors(markdown_enabled: Optional[bool] = None) -> Dict[str, object]:
    """Build the format -> strategy registry once, at startup."""
    if markdown_enabled is None:
        markdown_enabled = markdown_available()
    text = TextExtractor()
    registry = {
        ContentFormat.HTML.value: HtmlExtractor(),
        ContentFormat.TEXT.value: text,
    }
    if markdown_enabled:
        registry[ContentFormat.MARKDOWN.value] = MarkdownExtractor()
    else:
        logger.warning("markdownify not available; markdown requests will return text")
        registry[ContentFormat.MARKDOWN.value] = text
    return registry
