"""
Content Cleaner
===============

HTML to plain-text conversion for feed item fields.

Conversion rules:
- script/style and other non-content elements are dropped with their content
- images are skipped entirely
- anchors keep their text, link targets are dropped
- block elements become line breaks, runs of whitespace collapse
"""

import re
import html

from bs4 import BeautifulSoup, Comment
from bs4.element import CData, ProcessingInstruction, Doctype

from ..utils.logging import get_logger_for_component


class ContentCleaner:
    """Converts HTML fragments found in feed items to readable text."""

    # Elements removed together with their content
    DROPPED_ELEMENTS = {
        "script",
        "style",
        "iframe",
        "embed",
        "object",
        "applet",
        "form",
        "input",
        "button",
        "select",
        "textarea",
        "meta",
        "link",
        "base",
        "noscript",
        "canvas",
        "img",
        "picture",
        "svg",
        "video",
        "audio",
    }

    BLOCK_ELEMENTS = {
        "p",
        "div",
        "br",
        "li",
        "tr",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "blockquote",
        "pre",
        "section",
        "article",
        "figure",
        "figcaption",
        "hr",
    }

    INLINE_WHITESPACE_PATTERN = re.compile(r"[ \t\r\f\v\u00a0]+")
    MULTIPLE_NEWLINES_PATTERN = re.compile(r"\n\s*\n\s*\n+")

    def __init__(self, parser: str = "html.parser"):
        self.logger = get_logger_for_component("content_cleaner")
        self.parser = parser

    @staticmethod
    def looks_like_html(value: str) -> bool:
        """Cheap markup heuristic: the text holds both ``<`` and ``>``."""
        return "<" in value and ">" in value

    def html_to_text(self, html_content: str) -> str:
        """Convert an HTML fragment to plain text.

        Args:
            html_content: Raw HTML

        Returns:
            Plain text with normalized whitespace

        Exceptions raised by the HTML parser propagate to the caller.
        """
        if not html_content or not html_content.strip():
            return ""

        soup = BeautifulSoup(html_content, self.parser)

        for element in soup.find_all(self.DROPPED_ELEMENTS):
            element.decompose()

        for element in soup.find_all(
            string=lambda text: isinstance(text, (Comment, CData, ProcessingInstruction, Doctype))
        ):
            element.extract()

        # Anchors: keep the visible text, lose the target
        for anchor in soup.find_all("a"):
            anchor.unwrap()

        for element in soup.find_all(self.BLOCK_ELEMENTS):
            element.insert_before("\n")
            element.insert_after("\n")

        return self._normalize_text(soup.get_text())

    def _normalize_text(self, text: str) -> str:
        text = html.unescape(text)
        text = self.INLINE_WHITESPACE_PATTERN.sub(" ", text)
        lines = [line.strip() for line in text.split("\n")]
        text = "\n".join(lines)
        text = self.MULTIPLE_NEWLINES_PATTERN.sub("\n\n", text)
        return text.strip()


def make_snippet(text: str, max_length: int = 300) -> str:
    """Single-line excerpt of ``text`` cut at a word boundary."""
    flat = " ".join(text.split())
    if len(flat) <= max_length:
        return flat
    cut = flat[:max_length].rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:.") + "..."
