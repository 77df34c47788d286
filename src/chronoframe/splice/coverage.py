# src/chronoframe/splice/coverage.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple, Union

import numpy as np

from chronoframe.chronolog.model import AgeRange, Section
from chronoframe.errors import OverlappingCoverage, UnknownSection

RangeLike = Union[AgeRange, Tuple[float, float], Sequence[float]]


@dataclass(frozen=True)
class CoverageInterval:
    """
    Age interval owned by one section.

    Closed on the right unless another interval starts exactly at `end`; then
    a sample aged exactly `end` belongs to the next interval, so no age is
    claimed twice.
    """
    section_id: str
    start: float
    end: float
    closed_right: bool = True

    def contains(self, age: float) -> bool:
        if self.start <= age < self.end:
            return True
        return bool(self.closed_right and age == self.end)


def _seal(intervals: Iterable[CoverageInterval]) -> List[CoverageInterval]:
    iv = sorted(intervals, key=lambda c: (c.start, c.end, c.section_id))
    out: List[CoverageInterval] = []
    for n, c in enumerate(iv):
        handed_on = any(o.start == c.end for m, o in enumerate(iv) if m != n)
        out.append(replace(c, closed_right=not handed_on))
    return out


def explicit_coverage(coverage: Mapping[str, RangeLike], known_ids: Iterable[str]) -> List[CoverageInterval]:
    """
    Normalise caller-specified ranges ((start, end) in either order) and reject
    overlaps, naming the offending pair. Nothing is trimmed or re-assigned.
    """
    known = set(known_ids)
    ranges: List[Tuple[str, AgeRange]] = []
    for sid, r in coverage.items():
        if sid not in known:
            raise UnknownSection(sid)
        ranges.append((sid, AgeRange.of(r)))

    ranges.sort(key=lambda t: (t[1].start, t[1].end, t[0]))
    for n, (sa, ra) in enumerate(ranges):
        for sb, rb in ranges[n + 1 :]:
            if ra.overlaps(rb):
                raise OverlappingCoverage(sa, sb, ra.as_tuple(), rb.as_tuple())

    return _seal(CoverageInterval(sid, r.start, r.end) for sid, r in ranges)


def _dated_ages(section: Section) -> np.ndarray:
    a = np.asarray([s.age for s in section.samples if s.age is not None], dtype="float64")
    return np.unique(a[np.isfinite(a)])


def local_age_gap(ages: np.ndarray, start: float, end: float) -> float:
    """
    Median age step between consecutive samples spanning [start, end] (one
    neighbour beyond each bound included). Smaller = higher resolution.
    """
    if ages.size < 2:
        return float("inf")
    inside = np.where((ages >= start) & (ages <= end))[0]
    if inside.size == 0:
        lo = int(np.searchsorted(ages, start)) - 1
        hi = lo + 1
    else:
        lo, hi = int(inside[0]) - 1, int(inside[-1]) + 1
    lo = max(0, lo)
    hi = min(int(ages.size) - 1, hi)
    if hi <= lo:
        return float("inf")
    return float(np.median(np.diff(ages[lo : hi + 1])))


def default_coverage(sections: Sequence[Section], *, min_samples: int = 1) -> List[CoverageInterval]:
    """
    Partition the union of the sections' age ranges at every section's first
    and last age, and give each piece to the section with the smallest local
    age gap there. Exact ties go to the lowest section id (sorted order).

    A section needs at least `min_samples` dated samples inside a piece to be
    preferred; if no covering section has that many, any covering section may
    win. Adjacent pieces with the same winner are merged.
    """
    ages: Dict[str, np.ndarray] = {s.id: _dated_ages(s) for s in sections}
    ages = {k: v for k, v in ages.items() if v.size}
    if not ages:
        return []

    ordinal = {sid: n for n, sid in enumerate(sorted(ages))}
    bps = np.unique(np.concatenate([[v[0], v[-1]] for v in ages.values()]))

    if bps.size == 1:
        # every section is a single age; lowest id wins
        sid = min(ages, key=lambda k: ordinal[k])
        return [CoverageInterval(sid, float(bps[0]), float(bps[0]))]

    pieces: List[CoverageInterval] = []
    for b0, b1 in zip(bps[:-1].tolist(), bps[1:].tolist()):
        covering = [sid for sid, a in ages.items() if a[0] <= b0 and a[-1] >= b1]
        if not covering:
            continue
        dense = [sid for sid in covering if int(((ages[sid] >= b0) & (ages[sid] <= b1)).sum()) >= int(min_samples)]
        pool = dense or covering
        best = min(pool, key=lambda sid: (local_age_gap(ages[sid], b0, b1), ordinal[sid]))
        if pieces and pieces[-1].section_id == best and pieces[-1].end == b0:
            pieces[-1] = replace(pieces[-1], end=b1)
        else:
            pieces.append(CoverageInterval(best, b0, b1))

    return _seal(pieces)
