"""
Record Deduplicator
===================
Accumulates extracted fragments across repeated extraction passes.

Virtualized documentation pages re-render (and drop) sections as the
viewport moves, so the same section is usually extracted many times.  The
deduplicator keys every fragment by its derived name:

- the latest fragment seen for a name wins
- output order is the order in which each name was FIRST seen
- the key set only grows until ``drain()``
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable, List

from .errors import ExtractionAnomaly
from .harvest_model import RawFragment

logger = logging.getLogger(__name__)


class RecordDeduplicator:
    """Ordered, last-write-wins map from record name to fragment."""

    def __init__(self) -> None:
        self._entries: "OrderedDict[str, RawFragment]" = OrderedDict()
        self.anomalies: List[ExtractionAnomaly] = []

    def merge(self, batch: Iterable[RawFragment]) -> int:
        """Insert or overwrite one entry per fragment in ``batch``.

        Everything is stored, including fragments without markup.  Nameless
        fragments share the empty key and overwrite each other; callers that
        need to keep all of them must filter before merging.

        Returns:
            Number of keys that were new in this batch.
        """
        added = 0
        nameless = 0
        first_nameless = "" not in self._entries
        for fragment in batch:
            key = fragment.name or ""
            if not key:
                nameless += 1
            if key not in self._entries:
                added += 1
            # Assigning to an existing key keeps its original position.
            self._entries[key] = fragment

        if nameless:
            if first_nameless:
                anomaly = ExtractionAnomaly(
                    kind="empty-name",
                    detail=f"{nameless} fragment(s) without a name in batch",
                )
                self.anomalies.append(anomaly)
                logger.warning(f"[DEDUP] {anomaly}")
            else:
                logger.debug(f"[DEDUP] {nameless} more fragment(s) without a name")

        return added

    def size(self) -> int:
        """Current number of distinct keys."""
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def drain(self) -> List[RawFragment]:
        """Final fragments in first-seen order.

        Fragments without markup are not extractable and are dropped here,
        never in ``merge()``.
        """
        fragments = []
        for fragment in self._entries.values():
            if not fragment.raw_fragment:
                logger.debug(f"[DEDUP] Dropping '{fragment.name}' — no markup captured")
                continue
            fragments.append(fragment)
        return fragments
