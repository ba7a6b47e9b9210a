"""
Tests for the record deduplicator.

Covers:
  1. Idempotent merge and monotonic key growth
  2. Last-write-wins with first-seen ordering
  3. Nameless fragments and fragments without markup
"""

import pytest

from harvester.dedup import RecordDeduplicator
from harvester.harvest_model import RawFragment


def _batch(*pairs):
    return [RawFragment(name=name, raw_fragment=raw) for name, raw in pairs]


# ====================================================================
# 1. Merge properties
# ====================================================================

class TestMergeProperties:

    def test_merge_is_idempotent(self):
        batch = _batch(("A", "<p>a</p>"), ("B", "<p>b</p>"), ("C", "<p>c</p>"))

        once = RecordDeduplicator()
        once.merge(batch)

        twice = RecordDeduplicator()
        twice.merge(batch)
        twice.merge(batch)

        assert twice.drain() == once.drain()

    def test_second_identical_merge_adds_nothing(self):
        dedup = RecordDeduplicator()
        batch = _batch(("A", "<p>a</p>"), ("B", "<p>b</p>"))
        assert dedup.merge(batch) == 2
        assert dedup.merge(batch) == 0

    def test_size_never_decreases(self):
        dedup = RecordDeduplicator()
        sizes = []
        for batch in (
            _batch(("A", "1"), ("B", "1")),
            _batch(("B", "2")),
            _batch(),
            _batch(("C", "1"), ("A", "2")),
            _batch(("A", "3")),
        ):
            dedup.merge(batch)
            sizes.append(dedup.size())
        assert sizes == sorted(sizes)
        assert sizes[-1] == 3

    def test_len_and_contains(self):
        dedup = RecordDeduplicator()
        dedup.merge(_batch(("A", "1")))
        assert len(dedup) == 1
        assert "A" in dedup
        assert "B" not in dedup


# ====================================================================
# 2. Overwrite and ordering
# ====================================================================

class TestOverwrite:

    def test_same_name_latest_fragment_wins(self):
        dedup = RecordDeduplicator()
        dedup.merge(_batch(("A", "<p>1</p>")))
        dedup.merge(_batch(("A", "<p>2</p>")))

        drained = dedup.drain()
        assert len(drained) == 1
        assert drained[0].name == "A"
        assert drained[0].raw_fragment == "<p>2</p>"

    def test_order_is_first_seen(self):
        dedup = RecordDeduplicator()
        dedup.merge(_batch(("B", "1"), ("A", "1")))
        dedup.merge(_batch(("C", "1"), ("B", "2")))
        assert [f.name for f in dedup.drain()] == ["B", "A", "C"]


# ====================================================================
# 3. Degenerate fragments
# ====================================================================

class TestDegenerateFragments:

    def test_empty_names_share_one_key(self):
        dedup = RecordDeduplicator()
        dedup.merge(_batch(("", "<p>x</p>"), ("", "<p>y</p>")))
        assert dedup.size() == 1
        assert dedup.drain()[0].raw_fragment == "<p>y</p>"

    def test_empty_name_records_anomaly(self):
        dedup = RecordDeduplicator()
        dedup.merge(_batch(("", "<p>x</p>"), ("A", "<p>a</p>")))
        assert len(dedup.anomalies) == 1
        assert dedup.anomalies[0].kind == "empty-name"

    def test_repeated_nameless_fragments_record_one_anomaly(self):
        dedup = RecordDeduplicator()
        for _ in range(50):
            dedup.merge(_batch(("", "<p>x</p>"), ("A", "<p>a</p>")))
        assert [a.kind for a in dedup.anomalies] == ["empty-name"]

    def test_missing_markup_counts_but_is_not_drained(self):
        dedup = RecordDeduplicator()
        dedup.merge(_batch(("A", None), ("B", "<p>b</p>")))
        assert dedup.size() == 2
        assert [f.name for f in dedup.drain()] == ["B"]

    @pytest.mark.parametrize("raw", [None, ""])
    def test_later_markup_replaces_missing_markup(self, raw):
        dedup = RecordDeduplicator()
        dedup.merge(_batch(("A", raw)))
        dedup.merge(_batch(("A", "<p>a</p>")))
        assert [f.raw_fragment for f in dedup.drain()] == ["<p>a</p>"]
