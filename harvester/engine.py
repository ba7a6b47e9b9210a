"""
Async Harvest Engine
====================
Worker-pool crawler that drives ``PageHarvester`` over one configured site.

Architecture:
  ┌──────────────────────────────────────────────────────────┐
  │                     HarvestEngine                        │
  │                                                          │
  │  asyncio.Queue ──► Worker 1 ──► Page 1 (BrowserContext)  │
  │     (URLs)     ──► Worker 2 ──► Page 2                   │
  │                ──► Worker N ──► Page N                   │
  │                                                          │
  │  Shared: visited set, monitor, dataset                   │
  │  Single browser, single context, N pages                 │
  └──────────────────────────────────────────────────────────┘

Single-page site types only ever process the seed URL.  ``individualPages``
sites follow same-host anchors (include/exclude globs applied), links
revealed by clicking the ``click`` selector and links matched by the
``link`` selector.

Each page runs under a handler budget (``asyncio.wait_for``); a page that
fails or times out is logged, counted and skipped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from .dataset import Dataset
from .errors import ConfigurationError
from .harvest_model import PageHarvest
from .monitor import HarvestMetrics, PageTiming, PerformanceMonitor
from .orchestrator import PageHarvester, collect_links
from .run_config import HarvestRunConfig, PageType, SiteConfig
from .utils import GlobFilter, URLNormalizer

logger = logging.getLogger(__name__)

_VIEWPORT = {'width': 1366, 'height': 900}

_COOKIE_SELECTORS = [
    # OneTrust
    '#onetrust-accept-btn-handler',
    # TrustArc
    '#truste-consent-button',
    # CookieBot
    '#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll',
    '#CybotCookiebotDialogBodyButtonAccept',
    # Generic
    'button:has-text("Accept All")',
    'button:has-text("Accept all cookies")',
    'button:has-text("Accept")',
    'button:has-text("I Accept")',
    'button:has-text("Agree")',
    'button:has-text("Got it")',
    '.cookie-accept',
    '.cc-accept',
    '#accept-cookies',
]


@dataclass
class HarvestRunResult:
    """Outcome of one engine run."""
    pages: List[PageHarvest] = field(default_factory=list)
    errors: List[Dict] = field(default_factory=list)
    metrics: Optional[HarvestMetrics] = None

    @property
    def record_count(self) -> int:
        return sum(p.record_count for p in self.pages)


class HarvestEngine:
    """
    Harvests one site into its dataset.

    Usage::

        engine = HarvestEngine(site, HarvestRunConfig(), dataset)
        result = await engine.crawl()

        # Or from sync code:
        result = engine.run()
    """

    def __init__(
        self,
        site: SiteConfig,
        config: Optional[HarvestRunConfig] = None,
        dataset: Optional[Dataset] = None,
    ):
        self.site = site
        self.config = config or HarvestRunConfig()
        self.dataset = dataset
        self.harvester = PageHarvester(site, self.config)
        self.url_normalizer = URLNormalizer()
        self.link_filter = GlobFilter(site.link_globs, site.exclude_globs)
        self.monitor = PerformanceMonitor(max_workers=self.config.max_concurrency)

        # State (reset per crawl)
        self._visited: Set[str] = set()
        self._queued: Set[str] = set()
        self._pages: List[PageHarvest] = []
        self._errors: List[Dict] = []

        # Playwright handles
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

        # Async primitives
        self._queue: Optional[asyncio.Queue] = None
        self._visited_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Sync entry point
    # ------------------------------------------------------------------

    def run(self) -> HarvestRunResult:
        """Sync wrapper around :meth:`crawl`."""
        return asyncio.run(self.crawl())

    # ------------------------------------------------------------------
    # Main async crawl
    # ------------------------------------------------------------------

    async def crawl(self) -> HarvestRunResult:
        """
        1. Initialize browser + context
        2. Seed queue with the site URL
        3. Spawn N worker coroutines
        4. Workers harvest pages and enqueue follow-up links
        5. Wait until the queue is drained
        """
        self._visited.clear()
        self._queued.clear()
        self._pages.clear()
        self._errors.clear()

        handler_timeout = self.config.handler_timeout_s(self.site.page_type)
        logger.info("=" * 65)
        logger.info("HARVEST STARTED")
        logger.info(f"Service: {self.site.name} ({self.site.service_id or 'no id'})")
        logger.info(f"Start URL: {self.site.url}")
        logger.info(f"Type: {self.site.page_type.value}, strategy: {self.harvester.strategy.value}")
        logger.info(f"Workers: {self.config.max_concurrency}, handler timeout: {handler_timeout}s")
        logger.info("=" * 65)

        stop_reason = "completed"
        self._queue = asyncio.Queue()
        workers: List[asyncio.Task] = []

        await self._init_browser()
        self.monitor.start()

        try:
            await self._enqueue([self.site.url])

            workers = [
                asyncio.create_task(self._worker(i))
                for i in range(self.config.max_concurrency)
            ]
            await self._queue.join()
        except Exception as e:
            stop_reason = f"Error: {e}"
            logger.error(f"[ENGINE] Harvest error: {e}", exc_info=True)
        finally:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            self.monitor.stop(stop_reason)
            await self._close_browser()

        metrics = await self.monitor.snapshot()
        logger.info("\n" + self.monitor.format_summary(metrics))

        return HarvestRunResult(
            pages=list(self._pages),
            errors=self._errors.copy(),
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _worker(self, worker_id: int) -> None:
        """Pull URLs from the queue until cancelled."""
        while True:
            url = await self._queue.get()
            try:
                await self.monitor.worker_started()
                await self._process(url)
            except Exception as e:
                logger.error(f"[WORKER-{worker_id}] Unexpected error: {e}", exc_info=True)
            finally:
                await self.monitor.worker_finished()
                self._queue.task_done()

    async def _process(self, url: str) -> None:
        """Harvest one URL under the handler budget and record the outcome."""
        async with self._visited_lock:
            if url in self._visited:
                return
            self._visited.add(url)

        timing = PageTiming(url=url)
        t_start = time.monotonic()
        timeout_s = self.config.handler_timeout_s(self.site.page_type)
        page = await self._context.new_page()
        try:
            await asyncio.wait_for(self._handle(page, url, timing), timeout=timeout_s)
        except asyncio.TimeoutError:
            timing.status = "timeout"
            logger.warning(f"[ENGINE] {url[:80]} exceeded the {timeout_s}s handler budget")
            self._errors.append({'url': url, 'error': f"Handler timed out after {timeout_s}s"})
        except ConfigurationError as e:
            timing.status = "failed"
            logger.error(f"[ENGINE] Configuration error on {url[:80]}: {e}")
            self._errors.append({'url': url, 'error': str(e)})
        except PlaywrightError as e:
            timing.status = "failed"
            logger.error(f"[ENGINE] Browser error on {url[:80]}: {e}", exc_info=True)
            self._errors.append({'url': url, 'error': str(e)})
        except Exception as e:
            timing.status = "failed"
            logger.error(f"[ENGINE] Unexpected error on {url[:80]}: {e}", exc_info=True)
            self._errors.append({'url': url, 'error': str(e)})
        finally:
            timing.total_ms = (time.monotonic() - t_start) * 1000
            await self.monitor.record_page(timing)
            try:
                await page.close()
            except PlaywrightError:
                logger.debug(f"[ENGINE] Page for {url[:80]} already closed")

    async def _handle(self, page: Page, url: str, timing: PageTiming) -> None:
        t_nav = time.monotonic()
        await page.goto(url, timeout=self.config.navigation_timeout_ms, wait_until='domcontentloaded')
        timing.navigate_ms = (time.monotonic() - t_nav) * 1000

        await self._dismiss_cookie_consent(page)

        t_harvest = time.monotonic()
        result = await self.harvester.harvest(page, page.url or url)
        timing.harvest_ms = (time.monotonic() - t_harvest) * 1000
        timing.record_count = result.record_count

        if self.dataset is not None:
            t_store = time.monotonic()
            await self.dataset.push_data(result.to_dict())
            timing.store_ms = (time.monotonic() - t_store) * 1000
        self._pages.append(result)

        if self.site.page_type is PageType.INDIVIDUAL_PAGES:
            links = await self._follow_up_links(page, result)
            timing.link_count = len(links)
            await self._enqueue(links)

    # ------------------------------------------------------------------
    # Link following
    # ------------------------------------------------------------------

    async def _follow_up_links(self, page: Page, result: PageHarvest) -> List[str]:
        """Same-host anchors passing the site globs, plus the harvester's links."""
        anchors = [
            link for link in await collect_links(page, result.url)
            if self.url_normalizer.is_same_host(link, self.site.url)
        ]
        return self.link_filter.filter(anchors) + list(result.follow_up_links)

    async def _enqueue(self, links: List[str]) -> int:
        new_count = 0
        for link in links:
            normalized = self.url_normalizer.normalize(link)
            if not normalized:
                continue
            async with self._visited_lock:
                if normalized in self._visited or normalized in self._queued:
                    continue
                self._queued.add(normalized)
            self._queue.put_nowait(normalized)
            new_count += 1

        if new_count:
            await self.monitor.record_enqueue(new_count)
            await self.monitor.update_queue_size(self._queue.qsize())
            logger.debug(f"[ENGINE] Enqueued {new_count} new URLs (queue={self._queue.qsize()})")
        return new_count

    # ------------------------------------------------------------------
    # Browser management
    # ------------------------------------------------------------------

    async def _init_browser(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=[
                '--disable-gpu',
                '--no-sandbox',
                '--disable-dev-shm-usage',
            ],
        )
        self._context = await self._browser.new_context(
            viewport=_VIEWPORT,
            locale='en-US',
        )
        logger.info(
            f"Async Playwright browser initialized "
            f"(workers={self.config.max_concurrency}, headless={self.config.headless})"
        )

    async def _close_browser(self) -> None:
        if self._context:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug(f"[ENGINE] Context close: {e}")
            self._context = None
        if self._browser:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"[ENGINE] Browser close: {e}")
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _dismiss_cookie_consent(self, page: Page) -> bool:
        """Click the first visible cookie-consent button.  Never fatal."""
        for selector in _COOKIE_SELECTORS:
            try:
                btn = await page.query_selector(selector)
                if btn and await btn.is_visible():
                    await btn.click(timeout=2000)
                    logger.debug(f"[COOKIE] Dismissed via: {selector}")
                    return True
            except PlaywrightError:
                continue
        return False
