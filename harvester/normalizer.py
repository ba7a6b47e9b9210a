"""
Content Normalizer
==================
Converts one raw HTML fragment into two independent views:

1. **article**  — readability extraction (title, cleaned content, plain text).
                  ``None`` when the fragment has no usable article structure,
                  which is common for short endpoint sections.
2. **markdown** — markdownify conversion.  Always produced; degrades to plain
                  text when conversion fails.

Both are pure functions of the input markup.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup
from lxml.etree import ParserError
from markdownify import markdownify
from readability import Document
from readability.readability import Unparseable

from .harvest_model import Article

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"

_BLANK_LINES_RE = re.compile(r"\n{3,}")
_TRAILING_SPACES_RE = re.compile(r"[ \t]+\n")

_EXCERPT_MAX_CHARS = 300


@dataclass
class NormalizedContent:
    article: Optional[Article]
    markdown: str


def _clean_markdown(markdown: str) -> str:
    markdown = _TRAILING_SPACES_RE.sub("\n", markdown)
    markdown = _BLANK_LINES_RE.sub("\n\n", markdown)
    return markdown.strip()


def to_markdown(raw_fragment: str) -> str:
    """Flatten markup to markdown.  Never raises."""
    if not raw_fragment or not raw_fragment.strip():
        return ""
    try:
        return _clean_markdown(markdownify(raw_fragment, heading_style="ATX"))
    except Exception as e:
        logger.debug(f"[NORMALIZE] markdownify failed ({e}), using plain text")
        soup = BeautifulSoup(raw_fragment, _BS_PARSER)
        return soup.get_text(separator="\n", strip=True)


def _excerpt(soup: BeautifulSoup, text: str) -> str:
    paragraph = soup.find('p')
    if paragraph is not None:
        candidate = paragraph.get_text(" ", strip=True)
        if candidate:
            return candidate[:_EXCERPT_MAX_CHARS]
    return text[:_EXCERPT_MAX_CHARS]


def to_article(raw_fragment: str) -> Optional[Article]:
    """Readability extraction.  ``None`` when no article structure is found."""
    if not raw_fragment or not raw_fragment.strip():
        return None
    try:
        doc = Document(raw_fragment)
        content = doc.summary(html_partial=True)
        title = doc.short_title()
    except (Unparseable, ParserError, ValueError) as e:
        logger.debug(f"[NORMALIZE] readability found no article: {e}")
        return None

    soup = BeautifulSoup(content or "", _BS_PARSER)
    text = soup.get_text(separator="\n", strip=True)
    if not text:
        return None

    return Article(
        title=(title or "").strip(),
        content=content,
        text_content=text,
        length=len(text),
        excerpt=_excerpt(soup, text),
    )


def normalize(raw_fragment: str) -> NormalizedContent:
    """Both views of one fragment."""
    return NormalizedContent(
        article=to_article(raw_fragment),
        markdown=to_markdown(raw_fragment),
    )
