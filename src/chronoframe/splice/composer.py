# src/chronoframe/splice/composer.py
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from chronoframe.chronolog.model import CompositeSample, Sample, Section
from chronoframe.config.schema import SpliceConfig
from chronoframe.errors import NoAgeData

from .coverage import CoverageInterval, RangeLike, default_coverage, explicit_coverage

logger = logging.getLogger(__name__)


def _dated_samples(section: Section) -> List[Sample]:
    """
    Dated samples sorted by age; repeated ages (duplicate depths) keep the
    shallowest row so each age maps to exactly one row.
    """
    dated = [s for s in section.samples if s.age is not None]
    dated.sort(key=lambda s: (float(s.age), float("inf") if s.depth is None else float(s.depth)))
    out: List[Sample] = []
    for s in dated:
        if out and float(out[-1].age) == float(s.age):
            continue
        out.append(s)
    return out


class SpliceComposer:
    """
    Merges calibrated sections into one age-ordered composite.

    Every age interval draws from exactly one section; values are copied, never
    interpolated or averaged across sections, and no synthetic boundary
    samples are inserted.
    """

    def __init__(self, cfg: SpliceConfig = SpliceConfig()) -> None:
        self.cfg = cfg

    def coverage(
        self,
        sections: Sequence[Section],
        coverage: Optional[Mapping[str, RangeLike]] = None,
    ) -> List[CoverageInterval]:
        self._require_ages(sections)
        if coverage is not None:
            return explicit_coverage(coverage, [s.id for s in sections])
        return default_coverage(sections, min_samples=int(self.cfg.min_gap_samples))

    def compose(
        self,
        sections: Sequence[Section],
        coverage: Optional[Mapping[str, RangeLike]] = None,
    ) -> List[CompositeSample]:
        return self.splice(sections, coverage)[0]

    def splice(
        self,
        sections: Sequence[Section],
        coverage: Optional[Mapping[str, RangeLike]] = None,
    ) -> Tuple[List[CompositeSample], List[CoverageInterval]]:
        """Composite samples together with the coverage intervals they were drawn from."""
        intervals = self.coverage(sections, coverage)
        by_id: Dict[str, Section] = {s.id: s for s in sections}

        out: List[CompositeSample] = []
        for iv in intervals:
            for s in _dated_samples(by_id[iv.section_id]):
                if iv.contains(float(s.age)):
                    out.append(
                        CompositeSample(
                            age=float(s.age),
                            source_section_id=iv.section_id,
                            values=dict(s.values),
                            depth=s.depth,
                        )
                    )

        out.sort(key=lambda c: c.age)
        for a, b in zip(out[:-1], out[1:]):
            if not a.age < b.age:
                raise RuntimeError(f"Composite ages not strictly increasing at {a.age} ({a.source_section_id}/{b.source_section_id}).")

        logger.debug(
            "Composite: %d samples from %d interval(s) %s",
            len(out),
            len(intervals),
            [(iv.section_id, iv.start, iv.end) for iv in intervals],
        )
        return out, intervals

    @staticmethod
    def _require_ages(sections: Sequence[Section]) -> None:
        seen: Dict[str, int] = {}
        for s in sections:
            if s.id in seen:
                raise ValueError(f"Duplicate section id in splice input: {s.id!r}")
            seen[s.id] = 1
            if not s.has_ages():
                raise NoAgeData(s.id)

