"""
Harvest Data Model
==================
Records produced by a page harvest and their persisted shape.

    RawFragment  →  (normalizer)  →  Record
    List[Record] + page metadata  →  PageHarvest  →  dataset item
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class RawFragment:
    """A slice of rendered markup believed to be one logical content unit.

    ``name`` doubles as the deduplication key.  ``raw_fragment`` is ``None``
    when the strategy could not capture any markup for the unit.
    """
    name: str
    raw_fragment: Optional[str] = None


@dataclass
class Article:
    """Readable-article view of a fragment."""
    title: str = ""
    content: str = ""          # cleaned HTML of the main content
    text_content: str = ""
    length: int = 0
    excerpt: str = ""

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'content': self.content,
            'textContent': self.text_content,
            'length': self.length,
            'excerpt': self.excerpt,
        }


@dataclass
class Record:
    """One harvested endpoint/article."""
    name: str
    markdown: str = ""
    article: Optional[Article] = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'markdown': self.markdown,
            'article': self.article.to_dict() if self.article else None,
        }


@dataclass
class PageHarvest:
    """Everything harvested from a single page."""
    title: str
    url: str
    records: List[Record] = field(default_factory=list)
    follow_up_links: List[str] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return len(self.records)

    def to_dict(self) -> dict:
        """Dataset item shape: ``{title, url, endpoints}``."""
        return {
            'title': self.title,
            'url': self.url,
            'endpoints': [r.to_dict() for r in self.records],
        }
