"""
Utility Functions
URL normalization, glob-based link filtering, and naming helpers.
"""

import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

logger = logging.getLogger(__name__)


class URLNormalizer:
    """
    Normalizes URLs so the same page is only harvested once.
    Removes fragments and trailing slashes, lowercases scheme and host.
    """

    def __init__(self, remove_fragments: bool = True):
        self.remove_fragments = remove_fragments

    def normalize(self, url: str, base_url: str = None) -> Optional[str]:
        """
        Normalize a URL for consistent comparison.

        Args:
            url: The URL to normalize
            base_url: Optional base URL for resolving relative URLs

        Returns:
            Normalized URL string or None if it is not a crawlable http(s) URL
        """
        if not url:
            return None

        url = url.strip()

        # Skip javascript:, mailto:, tel:, data: URLs
        if url.lower().startswith(('javascript:', 'mailto:', 'tel:', 'data:', '#')):
            return None

        if base_url:
            url = urljoin(base_url, url)

        try:
            parsed = urlparse(url)
        except ValueError:
            return None

        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None

        path = re.sub(r'/+', '/', parsed.path or '/')
        if path != '/' and path.endswith('/'):
            path = path.rstrip('/')

        fragment = '' if self.remove_fragments else parsed.fragment

        return urlunparse((
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            path,
            parsed.params,
            parsed.query,
            fragment,
        ))

    def is_same_host(self, url: str, base_url: str) -> bool:
        """True when both URLs point at the same host (``www.`` ignored)."""
        def _host(u: str) -> str:
            host = urlparse(u).netloc.lower()
            return host[4:] if host.startswith('www.') else host

        try:
            return _host(url) == _host(base_url)
        except ValueError:
            return False


def absolute_url(href: Optional[str], base_url: str) -> Optional[str]:
    """Resolve ``href`` against the page URL.  ``None`` for unusable hrefs."""
    if href is None:
        return None
    href = href.strip()
    if href.lower().startswith(('javascript:', 'mailto:', 'tel:', 'data:')):
        return None
    return urljoin(base_url, href)


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """
    Translate a URL glob into a regex.

    ``**`` matches across path segments, ``*`` and ``?`` stay within one
    segment, everything else is literal.
    """
    out = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == '*':
            if pattern[i:i + 2] == '**':
                out.append('.*')
                i += 2
                continue
            out.append('[^/]*')
        elif char == '?':
            out.append('[^/]')
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile('^' + ''.join(out) + '$')


class GlobFilter:
    """
    Include/exclude filter for follow-up links.

    A URL is accepted when it matches at least one include glob (or no
    include globs are configured) and matches no exclude glob.
    """

    def __init__(self, include: Iterable[str] = (), exclude: Iterable[str] = ()):
        self.include = [glob_to_regex(g) for g in include]
        self.exclude = [glob_to_regex(g) for g in exclude]

    def accept(self, url: str) -> bool:
        if any(p.match(url) for p in self.exclude):
            return False
        if not self.include:
            return True
        return any(p.match(url) for p in self.include)

    def filter(self, urls: Iterable[str]) -> List[str]:
        return [u for u in urls if self.accept(u)]


_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


def kebab_case(value: str) -> str:
    """'Crisp Chat API' → 'crisp-chat-api', 'fooBar' → 'foo-bar'."""
    return '-'.join(w.lower() for w in _WORD_RE.findall(value or ''))
