"""
Tests for dataset storage and the performance monitor.
"""

import json

import pytest

from harvester.dataset import Dataset, dataset_name_for
from harvester.harvest_model import Article, PageHarvest, Record
from harvester.monitor import PageTiming, PerformanceMonitor
from harvester.run_config import PageType, SiteConfig


class TestDatasetName:

    def test_service_id_name_and_type(self):
        site = SiteConfig(
            url="https://docs.crisp.chat/", page_type=PageType.FLAT,
            service_id="42", name="Crisp Chat API",
        )
        assert dataset_name_for(site) == "42--crisp-chat-api--singlePage"

    def test_generated_id_when_missing(self):
        site = SiteConfig(url="https://x.dev/", page_type=PageType.ACCORDION, name="Petstore")
        service_id, name, page_type = dataset_name_for(site).split("--")
        assert len(service_id) == 32
        assert name == "petstore"
        assert page_type == "swagger"


class TestDataset:

    @pytest.mark.asyncio
    async def test_items_written_in_order(self, tmp_path):
        dataset = Dataset.open("42--crisp--singlePage", tmp_path)
        first = await dataset.push_data({"title": "A"})
        await dataset.push_data({"title": "B"})

        assert first.name == "000000001.json"
        assert dataset.item_count == 2
        assert [item["title"] for item in dataset.items()] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_reopen_appends(self, tmp_path):
        dataset = Dataset.open("svc", tmp_path)
        await dataset.push_data({"n": 1})

        reopened = Dataset.open("svc", tmp_path)
        path = await reopened.push_data({"n": 2})
        assert path.name == "000000002.json"

    @pytest.mark.asyncio
    async def test_page_harvest_shape(self, tmp_path):
        harvest = PageHarvest(
            title="Users",
            url="https://docs.example.com/api/users",
            records=[
                Record(
                    name="Get user",
                    markdown="## Get user",
                    article=Article(title="", content="<p>x</p>", text_content="x",
                                    length=1, excerpt="x"),
                ),
                Record(name="Delete user", markdown="## Delete user"),
            ],
            follow_up_links=["https://docs.example.com/api/orders"],
        )
        dataset = Dataset(tmp_path / "ds")
        path = await dataset.push_data(harvest.to_dict())

        with open(path, encoding="utf-8") as f:
            stored = json.load(f)
        assert set(stored) == {"title", "url", "endpoints"}
        assert stored["endpoints"][0]["article"]["textContent"] == "x"
        assert stored["endpoints"][1] == {
            "name": "Delete user", "markdown": "## Delete user", "article": None,
        }


class TestPerformanceMonitor:

    @pytest.mark.asyncio
    async def test_counts_by_status(self):
        monitor = PerformanceMonitor(max_workers=2)
        monitor.start()
        await monitor.record_enqueue(3)
        await monitor.record_page(PageTiming(url="a", total_ms=100, harvest_ms=80, record_count=4, link_count=2))
        await monitor.record_page(PageTiming(url="b", total_ms=300, status="failed"))
        await monitor.record_page(PageTiming(url="c", total_ms=200, status="timeout"))
        monitor.stop("completed")

        metrics = await monitor.snapshot()
        assert metrics.pages_harvested == 1
        assert metrics.pages_failed == 1
        assert metrics.pages_timed_out == 1
        assert metrics.total_records == 4
        assert metrics.total_links_discovered == 2
        assert metrics.total_enqueued == 3
        assert metrics.avg_page_ms == 200.0
        assert metrics.p95_page_ms == 300.0
        assert metrics.stop_reason == "completed"

        summary = monitor.format_summary(metrics)
        assert "HARVEST SUMMARY" in summary
        assert "Records emitted:     4" in summary

    @pytest.mark.asyncio
    async def test_worker_accounting(self):
        monitor = PerformanceMonitor()
        await monitor.worker_started()
        await monitor.worker_started()
        await monitor.worker_finished()
        await monitor.update_queue_size(5)
        await monitor.update_queue_size(2)
        metrics = await monitor.snapshot()
        assert metrics.active_workers == 1
        assert metrics.queue_peak == 5
