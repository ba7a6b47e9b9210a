"""
Tests for the harvest engine's worker loop, driven against a fake browser
context instead of a real Playwright browser.
"""

import asyncio

import pytest

from harvester.dataset import Dataset
from harvester.engine import HarvestEngine
from harvester.harvest_model import PageHarvest
from harvester.run_config import HarvestRunConfig, PageType, SelectorConfig, SiteConfig

from tests.fakes import FakeContext, FakePage

BASE = "https://docs.example.com"

ROUTES = {
    f"{BASE}/api/users": (
        '<html><body><h1>Users</h1><p>Lists every user.</p>'
        '<a href="/api/orders#list">Orders</a>'
        '<a href="/blog/launch">Blog</a>'
        '<a href="/api/changelog">Changelog</a>'
        '<a href="https://other.example.org/api/x">Elsewhere</a>'
        '</body></html>'
    ),
    f"{BASE}/api/orders": (
        '<html><body><h1>Orders</h1><p>Lists every order.</p>'
        '<a href="/api/users/">Users</a>'
        '</body></html>'
    ),
}


def _engine(tmp_path, page_type=PageType.INDIVIDUAL_PAGES, config=None, **site_kwargs):
    site = SiteConfig(
        url=f"{BASE}/api/users",
        page_type=page_type,
        link_globs=[f"{BASE}/api/**"],
        exclude_globs=["**/changelog"],
        service_id="1",
        name="Example",
        **site_kwargs,
    )
    return HarvestEngine(site, config or HarvestRunConfig(), Dataset(tmp_path / "ds"))


async def _drain(engine, context):
    """Run one worker over the queue the way ``crawl()`` does."""
    engine._context = context
    engine._queue = asyncio.Queue()
    await engine._enqueue([engine.site.url])
    worker = asyncio.create_task(engine._worker(0))
    await engine._queue.join()
    worker.cancel()
    await asyncio.gather(worker, return_exceptions=True)


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_duplicates_and_variants_collapse(self, tmp_path):
        engine = _engine(tmp_path)
        engine._queue = asyncio.Queue()
        added = await engine._enqueue([
            f"{BASE}/api/users",
            f"{BASE}/api/users/",
            f"{BASE}/api/users#top",
            "mailto:team@example.com",
            f"{BASE}/api/orders",
        ])
        assert added == 2
        assert engine._queue.qsize() == 2


class TestFollowUpLinks:

    @pytest.mark.asyncio
    async def test_anchors_filtered_and_harvester_links_kept(self, tmp_path):
        engine = _engine(tmp_path)
        url = f"{BASE}/api/users"
        page = FakePage(ROUTES[url], url=url)
        result = PageHarvest(title="Users", url=url, follow_up_links=["https://other.example.org/next"])

        links = await engine._follow_up_links(page, result)

        assert links == [
            f"{BASE}/api/orders#list",
            "https://other.example.org/next",
        ]


class TestWorker:

    @pytest.mark.asyncio
    async def test_individual_pages_are_followed(self, tmp_path):
        engine = _engine(tmp_path)
        context = FakeContext(ROUTES)

        await _drain(engine, context)

        assert [p.title for p in engine._pages] == ["Users", "Orders"]
        assert [item["url"] for item in engine.dataset.items()] == [
            f"{BASE}/api/users", f"{BASE}/api/orders",
        ]
        assert all(page.closed for page in context.pages)

        metrics = await engine.monitor.snapshot()
        assert metrics.pages_harvested == 2
        assert metrics.total_records == 2

    @pytest.mark.asyncio
    async def test_single_page_types_do_not_follow_links(self, tmp_path):
        engine = _engine(
            tmp_path,
            page_type=PageType.FLAT,
            selectors=SelectorConfig(delimiter="h1", name="h1"),
        )
        await _drain(engine, FakeContext(ROUTES))

        assert len(engine._pages) == 1
        assert engine._pages[0].records[0].name == "Users"

    @pytest.mark.asyncio
    async def test_configuration_error_counts_page_as_failed(self, tmp_path):
        engine = _engine(tmp_path, page_type=PageType.SECTIONED)
        await _drain(engine, FakeContext(ROUTES))

        assert engine._pages == []
        assert len(engine._errors) == 1
        assert "required" in engine._errors[0]["error"]
        metrics = await engine.monitor.snapshot()
        assert metrics.pages_failed == 1

    @pytest.mark.asyncio
    async def test_malformed_delimiter_counts_page_as_failed(self, tmp_path):
        engine = _engine(
            tmp_path,
            page_type=PageType.FLAT,
            selectors=SelectorConfig(delimiter="h1[", name="h1"),
        )
        await _drain(engine, FakeContext(ROUTES))

        assert engine._pages == []
        assert len(engine._errors) == 1
        assert "Invalid delimiter selector" in engine._errors[0]["error"]
        metrics = await engine.monitor.snapshot()
        assert metrics.pages_harvested == 0
        assert metrics.pages_failed == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_counts_page_as_failed(self, tmp_path):
        engine = _engine(tmp_path)

        async def broken_harvest(page, url=None):
            raise RuntimeError("parser exploded")

        engine.harvester.harvest = broken_harvest
        await _drain(engine, FakeContext(ROUTES))

        assert engine._pages == []
        assert engine._errors == [{'url': f"{BASE}/api/users", 'error': "parser exploded"}]
        metrics = await engine.monitor.snapshot()
        assert metrics.pages_harvested == 0
        assert metrics.pages_failed == 1

    @pytest.mark.asyncio
    async def test_handler_budget_enforced(self, tmp_path):
        config = HarvestRunConfig(individual_page_handler_timeout_s=0.05)
        engine = _engine(tmp_path, config=config)
        await _drain(engine, FakeContext(ROUTES, nav_delay=1.0))

        assert engine._pages == []
        assert engine.dataset.item_count == 0
        metrics = await engine.monitor.snapshot()
        assert metrics.pages_timed_out == 1
        assert "timed out" in engine._errors[0]["error"]
