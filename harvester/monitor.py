"""
Performance Monitor
====================
Run metrics for the harvest engine.

Tracks:
- Pages harvested / failed / timed out
- Records emitted and follow-up links discovered
- Queue peak and worker utilization
- Per-phase timing (navigate, harvest, store)

Async-safe: all methods use asyncio.Lock for concurrent workers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque

logger = logging.getLogger(__name__)


@dataclass
class PageTiming:
    """Timing breakdown for a single page harvest."""
    url: str = ""
    navigate_ms: float = 0.0
    harvest_ms: float = 0.0
    store_ms: float = 0.0
    total_ms: float = 0.0
    record_count: int = 0
    link_count: int = 0
    status: str = "ok"   # ok | failed | timeout


@dataclass
class HarvestMetrics:
    """Snapshot of engine metrics at a point in time."""
    pages_harvested: int = 0
    pages_failed: int = 0
    pages_timed_out: int = 0
    total_enqueued: int = 0
    total_records: int = 0
    total_links_discovered: int = 0

    queue_peak: int = 0
    active_workers: int = 0
    max_workers: int = 0

    avg_page_ms: float = 0.0
    avg_harvest_ms: float = 0.0
    p95_page_ms: float = 0.0
    elapsed_sec: float = 0.0

    stop_reason: str = ""


class PerformanceMonitor:
    """
    Async-safe monitor shared by the engine's workers.

    Usage::

        monitor = PerformanceMonitor(max_workers=3)
        monitor.start()
        await monitor.record_page(timing)
        metrics = await monitor.snapshot()
        monitor.stop("completed")
    """

    def __init__(self, max_workers: int = 3):
        self._lock = asyncio.Lock()
        self._start_time: float = 0.0
        self._max_workers = max_workers

        self._pages_harvested = 0
        self._pages_failed = 0
        self._pages_timed_out = 0
        self._total_enqueued = 0
        self._total_records = 0
        self._total_links = 0

        self._queue_peak = 0
        self._active_workers = 0

        # Keep last 1000 for percentile calc
        self._page_timings: Deque[PageTiming] = deque(maxlen=1000)
        self._stop_reason = ""

    def start(self) -> None:
        self._start_time = time.monotonic()

    def stop(self, reason: str = "completed") -> None:
        self._stop_reason = reason

    async def record_page(self, timing: PageTiming) -> None:
        async with self._lock:
            if timing.status == "ok":
                self._pages_harvested += 1
                self._total_records += timing.record_count
            elif timing.status == "timeout":
                self._pages_timed_out += 1
            else:
                self._pages_failed += 1
            self._total_links += timing.link_count
            self._page_timings.append(timing)

    async def record_enqueue(self, count: int = 1) -> None:
        async with self._lock:
            self._total_enqueued += count

    async def update_queue_size(self, size: int) -> None:
        async with self._lock:
            if size > self._queue_peak:
                self._queue_peak = size

    async def worker_started(self) -> None:
        async with self._lock:
            self._active_workers += 1

    async def worker_finished(self) -> None:
        async with self._lock:
            self._active_workers = max(0, self._active_workers - 1)

    async def snapshot(self) -> HarvestMetrics:
        """Take a consistent snapshot of all metrics."""
        now = time.monotonic()
        async with self._lock:
            elapsed = now - self._start_time if self._start_time else 0.0

            timings = [t.total_ms for t in self._page_timings if t.total_ms > 0]
            avg_page = sum(timings) / len(timings) if timings else 0.0
            harvest_times = [t.harvest_ms for t in self._page_timings if t.harvest_ms > 0]
            avg_harvest = sum(harvest_times) / len(harvest_times) if harvest_times else 0.0

            p95 = 0.0
            if timings:
                sorted_t = sorted(timings)
                idx = int(len(sorted_t) * 0.95)
                p95 = sorted_t[min(idx, len(sorted_t) - 1)]

            return HarvestMetrics(
                pages_harvested=self._pages_harvested,
                pages_failed=self._pages_failed,
                pages_timed_out=self._pages_timed_out,
                total_enqueued=self._total_enqueued,
                total_records=self._total_records,
                total_links_discovered=self._total_links,
                queue_peak=self._queue_peak,
                active_workers=self._active_workers,
                max_workers=self._max_workers,
                avg_page_ms=round(avg_page, 1),
                avg_harvest_ms=round(avg_harvest, 1),
                p95_page_ms=round(p95, 1),
                elapsed_sec=round(elapsed, 2),
                stop_reason=self._stop_reason,
            )

    def format_summary(self, metrics: HarvestMetrics) -> str:
        """Format a human-readable summary string."""
        lines = [
            "=" * 65,
            "  HARVEST SUMMARY",
            "=" * 65,
            f"  Pages harvested:     {metrics.pages_harvested}",
            f"  Pages failed:        {metrics.pages_failed}",
            f"  Pages timed out:     {metrics.pages_timed_out}",
            f"  Total enqueued:      {metrics.total_enqueued}",
            "-" * 65,
            f"  Records emitted:     {metrics.total_records}",
            f"  Links discovered:    {metrics.total_links_discovered}",
            "-" * 65,
            f"  Avg page time:       {metrics.avg_page_ms:.0f} ms",
            f"  Avg harvest time:    {metrics.avg_harvest_ms:.0f} ms",
            f"  P95 page time:       {metrics.p95_page_ms:.0f} ms",
            f"  Queue peak:          {metrics.queue_peak}",
            f"  Workers:             {metrics.max_workers}",
            "-" * 65,
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
            "=" * 65,
        ]
        return "\n".join(lines)
