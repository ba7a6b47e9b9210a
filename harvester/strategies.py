"""
Extraction Strategies
=====================
Turn the current DOM of a documentation page into ``RawFragment`` objects.

Four layouts are supported, selected once per page from the site type:

- **FLAT_DELIMITED**   — one long page; a section starts at each delimiter
                         element and runs over its following siblings.
- **SECTIONED**        — one long page; each delimiter element IS a section.
- **ACCORDION_PANELS** — Swagger-UI style; operations are collapsed panels
                         that must be expanded one at a time.
- **STANDALONE_PAGE**  — one page per endpoint; the whole body is the record.

Strategies read the DOM; only the accordion strategy interacts with the page
(it expands panels).  Scrolling belongs to ``ScrollConvergenceController``.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import ConfigurationError, ExtractionAnomaly
from .harvest_model import RawFragment
from .run_config import PageType, SelectorConfig

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"

JS_OUTER_HTML = "(element) => element.outerHTML"

# Tags that only add noise to article extraction on standalone pages
NON_CONTENT_TAGS = ('script', 'style', 'link', 'i', 'meta', 'svg', 'img')


# ---------------------------------------------------------------------------
# Swagger-UI selectors
# ---------------------------------------------------------------------------
SUMMARY_EXPANDED = '.opblock-summary-control[aria-expanded=true]'
SUMMARY_COLLAPSED = '.opblock-summary-control[aria-expanded=false]'
OPEN_PANEL = '.opblock.is-open'
PANEL_METHOD = '.opblock-summary-method'
PANEL_PATH = '.opblock-summary-path'
PANEL_DESCRIPTION = '.opblock-summary-description'


class Strategy(str, Enum):
    FLAT_DELIMITED = "flat_delimited"
    SECTIONED = "sectioned"
    ACCORDION_PANELS = "accordion_panels"
    STANDALONE_PAGE = "standalone_page"

    @property
    def needs_scrolling(self) -> bool:
        """Whether the strategy must be driven by the scroll controller."""
        return self in (Strategy.FLAT_DELIMITED, Strategy.SECTIONED)


def select_strategy(page_type: PageType, selectors: SelectorConfig) -> Strategy:
    """Pick the extraction strategy for a site.

    Individual-page sites normally harvest the whole page, but when both a
    delimiter and a name selector are configured each page is split into
    sections like a flat single page.
    """
    if page_type is PageType.FLAT:
        return Strategy.FLAT_DELIMITED
    if page_type is PageType.SECTIONED:
        return Strategy.SECTIONED
    if page_type is PageType.ACCORDION:
        return Strategy.ACCORDION_PANELS
    if page_type is PageType.INDIVIDUAL_PAGES:
        if selectors.has_sections:
            return Strategy.FLAT_DELIMITED
        return Strategy.STANDALONE_PAGE
    raise ConfigurationError(f"No extraction strategy for page type '{page_type}'")


def _require_sections(selectors: Optional[SelectorConfig], strategy: str) -> SelectorConfig:
    if selectors is None or not selectors.has_sections:
        raise ConfigurationError(
            f"Delimiter and name selectors are required for {strategy}",
            context={
                "delimiter": getattr(selectors, "delimiter", None),
                "name": getattr(selectors, "name", None),
            },
        )
    return selectors


# ---------------------------------------------------------------------------
# Shared page helpers
# ---------------------------------------------------------------------------

async def wait_for_settle(page, timeout_ms: int) -> bool:
    """Wait for network idle.  Returns False on timeout instead of raising.

    Partially rendered pages still carry useful content, so a slow page is
    harvested as-is.
    """
    try:
        await page.wait_for_load_state('networkidle', timeout=timeout_ms)
        return True
    except PlaywrightTimeout:
        logger.warning(
            f"[SETTLE] {page.url[:80]} not idle after {timeout_ms}ms, continuing anyway"
        )
        return False


async def page_heading(page) -> str:
    """Text of the first ``<h1>``, or empty string."""
    h1 = await page.query_selector('h1')
    if h1 is None:
        return ""
    return (await h1.text_content() or "").strip()


async def resolve_page_title(page) -> str:
    """Prefer the visible heading, fall back to ``<title>``."""
    heading = await page_heading(page)
    if heading:
        return heading
    return (await page.title() or "").strip()


async def _first_matching_text(element, candidates: Sequence[str]) -> str:
    """Live lookup: text of the first descendant matching any candidate."""
    for selector in candidates:
        match = await element.query_selector(selector)
        if match is not None:
            return (await match.text_content() or "").strip()
    return ""


def _select(soup, selector: str, role: str, one: bool = False):
    """``select``/``select_one`` that reports bad selectors as configuration errors."""
    try:
        return soup.select_one(selector) if one else soup.select(selector)
    except SelectorSyntaxError as e:
        raise ConfigurationError(
            f"Invalid {role} selector",
            context={role: selector, "reason": str(e).splitlines()[0]},
        ) from e


def first_matching_text_offline(html: str, candidates: Sequence[str]) -> str:
    """Offline lookup over serialized markup (no browser round-trips)."""
    if not html:
        return ""
    soup = BeautifulSoup(html, _BS_PARSER)
    for selector in candidates:
        match = _select(soup, selector, "name", one=True)
        if match is not None:
            return match.get_text().strip()
    return ""


def split_flat_sections(html: str, delimiter: str) -> List[str]:
    """Split a document into sections that start at each delimiter element.

    Section *i* is the delimiter's outer HTML followed by every following
    element sibling, stopping before delimiter *i+1* or at the end of the
    parent element.
    """
    soup = BeautifulSoup(html, _BS_PARSER)
    delimiters = _select(soup, delimiter, "delimiter")
    sections: List[str] = []

    for index, element in enumerate(delimiters):
        next_delimiter = delimiters[index + 1] if index + 1 < len(delimiters) else None
        parts = [str(element)]
        sibling = element.find_next_sibling()
        # Identity check: bs4 Tag equality is structural
        while sibling is not None and sibling is not next_delimiter:
            parts.append(str(sibling))
            sibling = sibling.find_next_sibling()
        sections.append(''.join(parts))

    return sections


def strip_non_content(html: str) -> str:
    """Remove scripts, styles, icons, images and metadata links from markup."""
    soup = BeautifulSoup(html, _BS_PARSER)
    for tag in NON_CONTENT_TAGS:
        for element in soup.find_all(tag):
            element.decompose()
    if soup.body is not None:
        return soup.body.decode_contents()
    return str(soup)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

async def extract_flat_sections(page, selectors: SelectorConfig) -> List[RawFragment]:
    """FLAT_DELIMITED: sibling-walk sections out of one page snapshot."""
    selectors = _require_sections(selectors, "flat single-page sections")

    html = await page.content()
    fragments = []
    for raw in split_flat_sections(html, selectors.delimiter):
        name = first_matching_text_offline(raw, selectors.name_candidates)
        fragments.append(RawFragment(name=name, raw_fragment=raw))

    logger.debug(f"[FLAT] {len(fragments)} sections in current DOM")
    return fragments


async def extract_sections(page, selectors: SelectorConfig) -> List[RawFragment]:
    """SECTIONED: every live delimiter element is one section."""
    selectors = _require_sections(selectors, "single-page sections")

    elements = await page.query_selector_all(selectors.delimiter)
    fragments = []
    for element in elements:
        raw = await element.evaluate(JS_OUTER_HTML)
        name = await _first_matching_text(element, selectors.name_candidates)
        fragments.append(RawFragment(name=name, raw_fragment=raw))

    logger.debug(f"[SECTIONS] {len(fragments)} sections in current DOM")
    return fragments


async def _collapse_open_panels(page) -> int:
    expanded = await page.query_selector_all(SUMMARY_EXPANDED)
    for control in expanded:
        await control.scroll_into_view_if_needed()
        await control.click()
    return len(expanded)


async def _text_of(element, selector: str) -> str:
    match = await element.query_selector(selector)
    if match is None:
        return ""
    return await match.text_content() or ""


async def extract_accordion_panels(
    page,
    selectors: Optional[SelectorConfig] = None,
    *,
    settle_timeout_ms: int = 5000,
    anomalies: Optional[List[ExtractionAnomaly]] = None,
) -> List[RawFragment]:
    """ACCORDION_PANELS: expand each Swagger-UI operation and capture it.

    Exactly one panel must be open after each click.  Anything else means the
    selectors matched something unexpected: the operation is skipped and every
    open panel is collapsed so no stale panels pile up.
    """
    logger.info("[ACCORDION] Parsing swagger panels")
    await wait_for_settle(page, settle_timeout_ms)

    collapsed = await _collapse_open_panels(page)
    logger.info(f"[ACCORDION] Collapsed {collapsed} open panels")

    operations = await page.query_selector_all(SUMMARY_COLLAPSED)
    logger.info(f"[ACCORDION] Found {len(operations)} operations")

    fragments: List[RawFragment] = []
    for operation in operations:
        await operation.scroll_into_view_if_needed()
        await operation.click()

        open_panels = await page.query_selector_all(OPEN_PANEL)
        if len(open_panels) != 1:
            anomaly = ExtractionAnomaly(
                kind="panel-count",
                detail=f"found {len(open_panels)} open panels, expected 1",
            )
            if anomalies is not None:
                anomalies.append(anomaly)
            logger.warning(f"[ACCORDION] {anomaly} — closing and skipping")
            await _collapse_open_panels(page)
            continue

        panel = open_panels[0]
        t_start = time.monotonic()
        await panel.scroll_into_view_if_needed()
        method = await _text_of(panel, PANEL_METHOD)
        path = await _text_of(panel, PANEL_PATH)
        description = await _text_of(panel, PANEL_DESCRIPTION)
        name = f"[{method}][{path}]: {description}".strip()
        raw = await panel.inner_html()

        await _collapse_open_panels(page)
        fragments.append(RawFragment(name=name, raw_fragment=raw))
        logger.info(
            f"[ACCORDION] [{len(fragments)}/{len(operations)}]"
            f"[{(time.monotonic() - t_start) * 1000:.0f}ms] Parsed endpoint: {name}"
        )

    logger.info(
        f"[ACCORDION] Finished {len(operations)} operations, "
        f"{len(fragments)} endpoints captured"
    )
    return fragments


async def extract_standalone_page(
    page,
    selectors: Optional[SelectorConfig] = None,
) -> List[RawFragment]:
    """STANDALONE_PAGE: the page body is a single record."""
    body = await page.inner_html('body')
    name = await resolve_page_title(page)
    return [RawFragment(name=name, raw_fragment=strip_non_content(body))]


EXTRACTORS = {
    Strategy.FLAT_DELIMITED: extract_flat_sections,
    Strategy.SECTIONED: extract_sections,
    Strategy.ACCORDION_PANELS: extract_accordion_panels,
    Strategy.STANDALONE_PAGE: extract_standalone_page,
}
