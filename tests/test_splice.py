from __future__ import annotations

from typing import Sequence

import numpy as np
import pytest

from chronoframe.chronolog.model import AgeRange, Sample, Section
from chronoframe.splice.composer import SpliceComposer
from chronoframe.splice.coverage import CoverageInterval, default_coverage, local_age_gap
from chronoframe.errors import NoAgeData, OverlappingCoverage, UnknownSection


def _make_dated(sid: str, ages: Sequence[float], *, value: float) -> Section:
    samples = [
        Sample(section_id=sid, depth=float(n), values={"delta18O": value + 0.001 * n}, age=float(a))
        for n, a in enumerate(ages)
    ]
    return Section(id=sid, samples=tuple(samples))


def _sections():
    a = _make_dated("A", np.arange(0.0, 10.5, 1.0), value=1.0)
    b = _make_dated("B", np.arange(5.0, 15.25, 0.5), value=2.0)
    return a, b


def test_default_coverage_prefers_finer_resolution() -> None:
    a, b = _sections()
    iv = default_coverage([a, b])
    assert [(c.section_id, c.start, c.end) for c in iv] == [("A", 0.0, 5.0), ("B", 5.0, 15.0)]
    assert not iv[0].closed_right
    assert iv[1].closed_right


def test_composite_is_age_ordered_and_unblended() -> None:
    a, b = _sections()
    out = SpliceComposer().compose([a, b])

    ages = [c.age for c in out]
    assert all(x < y for x, y in zip(ages[:-1], ages[1:]))
    assert ages[0] == 0.0 and ages[-1] == 15.0

    source = {s.id: {float(x.age): x for x in s.samples} for s in (a, b)}
    for c in out:
        orig = source[c.source_section_id][c.age]
        assert dict(c.values) == dict(orig.values)
        assert c.depth == orig.depth

    # boundary age 5.0 is taken once, by the section that starts there
    at5 = [c for c in out if c.age == 5.0]
    assert len(at5) == 1 and at5[0].source_section_id == "B"


def test_explicit_overlap_is_rejected() -> None:
    a, b = _sections()
    with pytest.raises(OverlappingCoverage) as ei:
        SpliceComposer().compose([a, b], {"A": (0.0, 10.0), "B": (5.0, 15.0)})
    assert set(ei.value.pair) == {"A", "B"}

    with pytest.raises(OverlappingCoverage):
        SpliceComposer().compose([a, b], {"A": (3.0, 8.0), "B": (3.0, 8.0)})


def test_explicit_coverage_normalises_reversed_ranges() -> None:
    a, b = _sections()
    out = SpliceComposer().compose([a, b], {"A": (5.0, 0.0), "B": AgeRange(5.0, 15.0)})
    assert [c.age for c in out if c.source_section_id == "A"] == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert min(c.age for c in out if c.source_section_id == "B") == 5.0


def test_explicit_coverage_leaves_gaps_unfilled() -> None:
    a, b = _sections()
    out = SpliceComposer().compose([a, b], {"A": (0.0, 2.0), "B": (12.0, 13.0)})
    assert [c.age for c in out] == [0.0, 1.0, 2.0, 12.0, 12.5, 13.0]


def test_undated_section_and_unknown_coverage() -> None:
    a, _ = _sections()
    undated = Section(id="C", samples=(Sample("C", 1.0, {"delta18O": 1.0}),))
    with pytest.raises(NoAgeData) as ei:
        SpliceComposer().compose([a, undated])
    assert ei.value.section_id == "C"

    with pytest.raises(UnknownSection):
        SpliceComposer().compose([a], {"Z": (0.0, 1.0)})


def test_equal_resolution_tie_goes_to_lowest_id() -> None:
    x = _make_dated("X", np.arange(0.0, 10.5, 1.0), value=1.0)
    w = _make_dated("W", np.arange(0.0, 10.5, 1.0), value=2.0)
    iv = SpliceComposer().coverage([x, w])
    assert [(c.section_id, c.start, c.end) for c in iv] == [("W", 0.0, 10.0)]


def test_interval_contains() -> None:
    closed = CoverageInterval("A", 0.0, 5.0)
    opened = CoverageInterval("A", 0.0, 5.0, closed_right=False)
    assert closed.contains(5.0) and not opened.contains(5.0)
    assert closed.contains(0.0) and not closed.contains(5.1)


def test_local_age_gap_uses_neighbours() -> None:
    ages = np.asarray([0.0, 1.0, 2.0, 4.0, 8.0])
    assert local_age_gap(ages, 1.5, 2.5) == pytest.approx(1.5)
    assert local_age_gap(np.asarray([3.0]), 0.0, 1.0) == float("inf")


def test_splice_returns_the_intervals_it_used() -> None:
    a, b = _sections()
    composer = SpliceComposer()
    samples, intervals = composer.splice([a, b])
    assert [(c.section_id, c.start, c.end) for c in intervals] == [("A", 0.0, 5.0), ("B", 5.0, 15.0)]
    assert samples == composer.compose([a, b])
    for c in samples:
        owner = next(iv for iv in intervals if iv.section_id == c.source_section_id)
        assert owner.contains(c.age)
