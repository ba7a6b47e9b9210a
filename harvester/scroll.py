"""
Scroll-Convergence Controller
=============================
Harvests pages that only render what is near the viewport (infinite scroll,
virtualized lists).

Each cycle scrolls one step, re-runs the extraction strategy against the
current DOM, merges the result into the page's ``RecordDeduplicator`` and
re-measures the document, which keeps growing while content loads.

State machine::

    SCROLLING ──(no new keys)──▶ STABILIZING ──(stable, far from bottom)──▶ LAST_PASS
        ▲                            │                                       │
        └────────(new keys)──────────┘                                       │
    any state ──(position >= document height)──▶ DONE ◀──────────────────────┘

"Stable" means the distinct-key count was identical for the last N cycles.
Once stable, the next scroll jumps straight to the current document bottom
and extracts one final time instead of stepping through the remaining
distance.  If the document grew during that pass, the loop resumes.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Deque, List, Sequence

from .dedup import RecordDeduplicator
from .harvest_model import RawFragment
from .run_config import SelectorConfig

logger = logging.getLogger(__name__)

ExtractFn = Callable[..., Awaitable[List[RawFragment]]]

# Page scripts
JS_VIEWPORT_HEIGHT = "() => window.innerHeight"
JS_DOCUMENT_HEIGHT = "() => document.body.scrollHeight"
JS_SCROLL_TO = "(y) => window.scrollTo(0, y)"

# Keep a few more entries than the window so logs show the trend
_HISTORY_SLACK = 5


class ScrollPhase(str, Enum):
    SCROLLING = "scrolling"
    STABILIZING = "stabilizing"
    LAST_PASS = "last_pass"
    DONE = "done"


@dataclass
class ScrollState:
    """Transient per-page scroll bookkeeping."""
    viewport_height: float = 0.0
    document_height: float = 0.0
    step: float = 0.0
    position: float = 0.0
    phase: ScrollPhase = ScrollPhase.SCROLLING
    cycles: int = 0
    size_history: Deque[int] = field(default_factory=deque)
    hit_cycle_limit: bool = False

    @property
    def remaining(self) -> float:
        return self.document_height - self.position


def is_stable_for_last_n(history: Sequence[int], n: int) -> bool:
    """True when the last ``n`` entries of ``history`` are all equal."""
    if n < 1 or len(history) < n:
        return False
    recent = list(history)[-n:]
    return len(set(recent)) == 1


class ScrollConvergenceController:
    """
    Drives scroll → extract → merge cycles for one page.

    Usage::

        controller = ScrollConvergenceController(
            extract_flat_sections, selectors, stability_window=10,
        )
        dedup = RecordDeduplicator()
        state = await controller.run(page, dedup)
        fragments = dedup.drain()

    Instances hold no page state between runs; all per-run state lives in
    the returned ``ScrollState``.
    """

    def __init__(
        self,
        extract: ExtractFn,
        selectors: SelectorConfig,
        *,
        step_multiplier: float = 1.2,
        stability_window: int = 10,
        max_cycles: int = 500,
    ):
        """
        Args:
            extract:          Extraction strategy ``(page, selectors) -> fragments``.
            selectors:        Site selectors passed through to ``extract``.
            step_multiplier:  Scroll step as a multiple of the viewport height.
            stability_window: Cycles with an unchanged key count before the
                              controller treats the page as converged.
            max_cycles:       Hard bound on cycles for pages that never stop growing.
        """
        self.extract = extract
        self.selectors = selectors
        self.step_multiplier = step_multiplier
        self.stability_window = stability_window
        self.max_cycles = max_cycles

    async def run(self, page, dedup: RecordDeduplicator) -> ScrollState:
        """Scroll the page to the bottom, merging every extraction into ``dedup``.

        Extraction errors (e.g. ``ConfigurationError``) are not caught here;
        they abort the whole page.
        """
        state = ScrollState(
            size_history=deque(maxlen=self.stability_window + _HISTORY_SLACK),
        )
        state.viewport_height = await page.evaluate(JS_VIEWPORT_HEIGHT)
        state.document_height = await page.evaluate(JS_DOCUMENT_HEIGHT)
        state.step = state.viewport_height * self.step_multiplier

        logger.info(
            f"[SCROLL] Start: viewport={state.viewport_height:.0f}px, "
            f"document={state.document_height:.0f}px, step={state.step:.0f}px, "
            f"window={self.stability_window}"
        )
        t_start = time.monotonic()

        while state.phase is not ScrollPhase.DONE:
            if state.cycles >= self.max_cycles:
                state.hit_cycle_limit = True
                logger.warning(
                    f"[SCROLL] Cycle limit ({self.max_cycles}) reached at "
                    f"{state.position:.0f}/{state.document_height:.0f}px — stopping"
                )
                break
            await self._cycle(page, dedup, state)
            state.phase = self._next_phase(state)

        logger.info(
            f"[SCROLL] Done after {state.cycles} cycles in "
            f"{(time.monotonic() - t_start) * 1000:.0f}ms — {dedup.size()} distinct items"
        )
        return state

    async def _cycle(self, page, dedup: RecordDeduplicator, state: ScrollState) -> None:
        """One scroll → extract → merge → measure step."""
        if state.phase is ScrollPhase.LAST_PASS:
            target = state.document_height
        else:
            target = state.position + state.step

        await page.evaluate(JS_SCROLL_TO, target)
        state.position = target

        batch = await self.extract(page, self.selectors)
        added = dedup.merge(batch)
        state.size_history.append(dedup.size())
        state.document_height = await page.evaluate(JS_DOCUMENT_HEIGHT)
        state.cycles += 1

        pct = min(100, round(state.position / state.document_height * 100)) if state.document_height else 100
        logger.info(
            f"[SCROLL] {pct}% ({state.position:.0f}/{state.document_height:.0f}px), "
            f"{dedup.size()} items parsed (+{added})"
        )

    def _next_phase(self, state: ScrollState) -> ScrollPhase:
        if state.position >= state.document_height:
            return ScrollPhase.DONE

        history = state.size_history
        if is_stable_for_last_n(history, self.stability_window):
            if state.remaining > state.step:
                logger.info("[SCROLL] Item count is stable, next scroll will be the last one")
                return ScrollPhase.LAST_PASS
            return ScrollPhase.STABILIZING

        if len(history) >= 2 and history[-1] == history[-2]:
            return ScrollPhase.STABILIZING
        return ScrollPhase.SCROLLING
