"""
Tests for the scroll-convergence controller.

Pages are simulated with ``tests.fakes`` so no browser is needed.
"""

import pytest

from harvester.dedup import RecordDeduplicator
from harvester.errors import ConfigurationError
from harvester.run_config import SelectorConfig
from harvester.scroll import (
    ScrollConvergenceController,
    ScrollPhase,
    is_stable_for_last_n,
)
from harvester.strategies import extract_flat_sections, extract_sections

from tests.fakes import FakePage, VirtualizedPage

SECTION_SELECTORS = SelectorConfig(delimiter=".endpoint", name=".name")


class TestStability:

    def test_window_of_four_is_stable(self):
        assert is_stable_for_last_n([3, 5, 7, 7, 7, 7], 4) is True

    def test_window_of_five_is_not_stable(self):
        assert is_stable_for_last_n([3, 5, 7, 7, 7, 7], 5) is False

    def test_short_history_is_not_stable(self):
        assert is_stable_for_last_n([7, 7], 3) is False

    def test_invalid_window(self):
        assert is_stable_for_last_n([1, 1, 1], 0) is False

    def test_window_of_one(self):
        assert is_stable_for_last_n([1, 2], 1) is True


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_growing_virtualized_page(self):
        """Document grows 1000→1800 while only nearby sections are rendered."""
        page = VirtualizedPage(initial_height=1000, max_height=1800, growth=200)
        dedup = RecordDeduplicator()
        controller = ScrollConvergenceController(
            extract_sections, SECTION_SELECTORS, step_multiplier=1.2, stability_window=10,
        )

        state = await controller.run(page, dedup)

        assert state.step == pytest.approx(600)
        assert state.position >= 1800
        assert state.phase is ScrollPhase.DONE
        assert page.scroll_calls == [600, 1200, 1800]

        names = [f.name for f in dedup.drain()]
        assert names == [f"Section {i}" for i in page.seen_sections]
        assert len(names) == len(set(names))

    @pytest.mark.asyncio
    async def test_latest_render_is_kept(self):
        page = VirtualizedPage()
        dedup = RecordDeduplicator()
        controller = ScrollConvergenceController(extract_sections, SECTION_SELECTORS)
        await controller.run(page, dedup)

        by_name = {f.name: f.raw_fragment for f in dedup.drain()}
        # Section 11 is rendered on every cycle; the last copy wins.
        assert f'data-render="{page.renders}"' in by_name["Section 11"]
        # Section 0 disappears after the first cycle.
        assert 'data-render="2"' in by_name["Section 0"]

    @pytest.mark.asyncio
    async def test_stable_page_jumps_to_bottom(self):
        html = "".join(
            f'<h2 class="op">Op {i}</h2><p>text {i}</p>' for i in range(5)
        )
        page = FakePage(f"<html><body><main>{html}</main></body></html>", document_height=3000)
        dedup = RecordDeduplicator()
        controller = ScrollConvergenceController(
            extract_flat_sections,
            SelectorConfig(delimiter="h2.op", name="h2.op"),
            stability_window=2,
        )

        state = await controller.run(page, dedup)

        assert page.scroll_calls == [600, 1200, 3000]
        assert state.cycles == 3
        assert dedup.size() == 5

    @pytest.mark.asyncio
    async def test_cycle_limit_stops_endless_page(self):
        class EndlessPage(FakePage):
            def on_scroll(self):
                self.document_height = self.scroll_y + 10_000

        page = EndlessPage(document_height=1000)
        controller = ScrollConvergenceController(
            extract_sections, SECTION_SELECTORS, max_cycles=5,
        )
        state = await controller.run(page, RecordDeduplicator())

        assert state.cycles == 5
        assert state.hit_cycle_limit is True
        assert state.phase is not ScrollPhase.DONE

    @pytest.mark.asyncio
    async def test_extraction_errors_propagate(self):
        page = VirtualizedPage()
        controller = ScrollConvergenceController(extract_sections, SelectorConfig())
        with pytest.raises(ConfigurationError):
            await controller.run(page, RecordDeduplicator())
        assert page.scroll_calls == [600]
