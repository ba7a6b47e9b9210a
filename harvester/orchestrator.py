"""
Page Harvest Orchestrator
=========================
Per-page driver: settle → title → extract → deduplicate → normalize.

    PageHarvester.harvest(page, url)
        ├─ wait_for_settle           (non-fatal on timeout)
        ├─ resolve_page_title        (<h1>, else <title>)
        ├─ select_strategy           (closed set, from site type)
        │    ├─ FLAT / SECTIONED     → ScrollConvergenceController
        │    └─ ACCORDION / STANDALONE → direct
        ├─ RecordDeduplicator.drain
        ├─ normalize                 (per surviving fragment)
        └─ follow-up links           (individualPages only)

The orchestrator never fetches another page; follow-up links are returned
to the engine.  ``ConfigurationError`` and browser faults propagate.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeout

from .dedup import RecordDeduplicator
from .harvest_model import PageHarvest, RawFragment, Record
from .normalizer import normalize
from .run_config import HarvestRunConfig, PageType, SiteConfig
from .scroll import ScrollConvergenceController
from .strategies import (
    EXTRACTORS,
    Strategy,
    extract_accordion_panels,
    resolve_page_title,
    select_strategy,
    wait_for_settle,
)
from .utils import GlobFilter, URLNormalizer, absolute_url

logger = logging.getLogger(__name__)


def assemble_records(fragments: List[RawFragment], url: str = "") -> List[Record]:
    """Normalize drained fragments into records.

    Fragments without a name cannot be told apart from each other and are
    dropped here with a warning.
    """
    records: List[Record] = []
    for fragment in fragments:
        name = (fragment.name or "").strip()
        if not name:
            logger.warning(
                f"[HARVEST] Dropping unnamed fragment on {url[:70]} "
                f"({len(fragment.raw_fragment or '')} chars)"
            )
            continue
        content = normalize(fragment.raw_fragment)
        records.append(Record(name=name, markdown=content.markdown, article=content.article))
    return records


async def collect_links(page, base_url: str, selector: str = 'a[href]') -> List[str]:
    """Absolute hrefs of every element matching ``selector``, de-duplicated."""
    links: List[str] = []
    for element in await page.query_selector_all(selector):
        url = absolute_url(await element.get_attribute('href'), base_url)
        if url and url not in links:
            links.append(url)
    return links


async def discover_click_links(page, selector: str, timeout_ms: int = 5000) -> List[str]:
    """Click each matching element and record where it navigates.

    The page is navigated back after every hit, and the elements are
    re-queried each time because navigation replaces them.
    """
    origin = page.url
    discovered: List[str] = []
    index = 0
    while True:
        elements = await page.query_selector_all(selector)
        if index >= len(elements):
            break
        element = elements[index]
        index += 1
        try:
            await element.click(timeout=timeout_ms)
            await page.wait_for_load_state('domcontentloaded', timeout=timeout_ms)
        except PlaywrightTimeout:
            logger.debug(f"[LINKS] Click #{index} on '{selector}' timed out")
        if page.url != origin:
            if page.url not in discovered:
                discovered.append(page.url)
            try:
                await page.go_back(timeout=timeout_ms)
            except PlaywrightTimeout:
                logger.warning(f"[LINKS] Could not navigate back to {origin[:70]}, stopping click discovery")
                break
            # Re-rendered navigation may not be back yet
            await wait_for_settle(page, timeout_ms)
    if discovered:
        logger.info(f"[LINKS] {len(discovered)} URLs revealed by clicking '{selector}'")
    return discovered


class PageHarvester:
    """
    Harvests one page of a configured site.

    Usage::

        harvester = PageHarvester(site, HarvestRunConfig())
        result = await harvester.harvest(page, page.url)

    A new ``RecordDeduplicator`` is created for every call, so one instance
    can be shared by concurrent workers.
    """

    def __init__(self, site: SiteConfig, config: Optional[HarvestRunConfig] = None):
        self.site = site
        self.config = config or HarvestRunConfig()
        self.strategy = select_strategy(site.page_type, site.selectors)
        self.url_normalizer = URLNormalizer()

    async def harvest(self, page, url: Optional[str] = None) -> PageHarvest:
        url = url or page.url
        t_start = time.monotonic()
        logger.info(f"[HARVEST] {url[:80]} — type={self.site.page_type.value}, strategy={self.strategy.value}")

        await wait_for_settle(page, self.config.settle_timeout_ms)
        if self.site.render_timeout_ms:
            logger.info(f"[HARVEST] Waiting {self.site.render_timeout_ms}ms for late rendering")
            await page.wait_for_timeout(self.site.render_timeout_ms)

        title = await resolve_page_title(page)
        logger.info(f"[HARVEST] Title of {url[:80]} is '{title}'")

        dedup = RecordDeduplicator()
        await self._extract(page, dedup)
        fragments = dedup.drain()

        t_norm = time.monotonic()
        records = assemble_records(fragments, url)
        logger.info(
            f"[HARVEST] {len(records)} records from {len(fragments)} fragments "
            f"(normalize {(time.monotonic() - t_norm) * 1000:.0f}ms, "
            f"total {(time.monotonic() - t_start) * 1000:.0f}ms)"
        )
        for anomaly in dedup.anomalies:
            logger.debug(f"[HARVEST] anomaly: {anomaly}")

        links: List[str] = []
        if self.site.page_type is PageType.INDIVIDUAL_PAGES:
            links = await self.follow_up_links(page, url)

        return PageHarvest(title=title, url=url, records=records, follow_up_links=links)

    async def _extract(self, page, dedup: RecordDeduplicator) -> None:
        selectors = self.site.selectors
        extract = EXTRACTORS[self.strategy]

        if self.strategy.needs_scrolling:
            controller = ScrollConvergenceController(
                extract,
                selectors,
                step_multiplier=self.config.scroll_step_multiplier,
                stability_window=self.config.stability_window,
                max_cycles=self.config.max_scroll_cycles,
            )
            await controller.run(page, dedup)
        elif self.strategy is Strategy.ACCORDION_PANELS:
            dedup.merge(await extract_accordion_panels(
                page,
                selectors,
                settle_timeout_ms=self.config.accordion_settle_timeout_ms,
                anomalies=dedup.anomalies,
            ))
        else:
            dedup.merge(await extract(page, selectors))

    async def follow_up_links(self, page, url: str) -> List[str]:
        """Links the engine may enqueue for individual-page sites.

        Only links from the ``link`` selector (taken as-is) and from clicking
        the ``click`` selector (include globs applied) are returned here;
        plain page anchors are the engine's job.
        """
        selectors = self.site.selectors
        candidates: List[str] = []
        if selectors.link:
            candidates.extend(await collect_links(page, url, selectors.link))
        if selectors.click:
            clicked = await discover_click_links(page, selectors.click, self.config.click_timeout_ms)
            candidates.extend(GlobFilter(include=self.site.link_globs).filter(clicked))

        links: List[str] = []
        for link in candidates:
            normalized = self.url_normalizer.normalize(link)
            if normalized and normalized not in links:
                links.append(normalized)
        return links
