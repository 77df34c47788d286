# src/chronoframe/correlation/aligner.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

import numpy as np

from chronoframe.chronolog.model import AlignmentCandidate, ProxySeries
from chronoframe.config.schema import AlignConfig
from chronoframe.errors import NoVariance

from .dtw import DtwResult, dtw_path_and_cost, zscore
from .salience import Salient, score_cells, select_non_crossing

logger = logging.getLogger(__name__)


class SuggestionStrategy(Protocol):
    """
    Anything that proposes tie points for a (reference, target) pair.

    Contract: order-preserving candidates inside both depth ranges, sorted by
    confidence desc then reference depth asc, at most max_suggestions long.
    A remote/AI-backed implementation may stand in for CurveAligner here.
    """

    def suggest(
        self,
        reference: ProxySeries,
        target: ProxySeries,
        max_suggestions: int = 7,
    ) -> List[AlignmentCandidate]:
        ...


@dataclass(frozen=True)
class AlignmentResult:
    dtw: DtwResult
    candidates: List[AlignmentCandidate]


class CurveAligner:
    """
    Deterministic DTW-based tie-point suggestions between two proxy series.
    """

    def __init__(self, cfg: AlignConfig = AlignConfig()) -> None:
        self.cfg = cfg

    def _check(self, s: ProxySeries) -> None:
        v = np.asarray(s.values, dtype="float64")
        if v.size == 0 or float(np.ptp(v)) <= 1e-12 * max(1.0, float(np.abs(v).max())):
            raise NoVariance(s.label or "series")

    def align(
        self,
        reference: ProxySeries,
        target: ProxySeries,
        max_suggestions: Optional[int] = None,
    ) -> Optional[AlignmentResult]:
        """
        Full alignment: DTW path, cost matrix and ranked candidates.

        Returns None when either series is shorter than cfg.min_points.
        Raises NoVariance when either series is flat.
        """
        cfg = self.cfg
        limit = int(cfg.max_suggestions if max_suggestions is None else max_suggestions)
        if len(reference) < int(cfg.min_points) or len(target) < int(cfg.min_points):
            return None
        self._check(reference)
        self._check(target)

        za = zscore(reference.values)
        zb = zscore(target.values)
        res = dtw_path_and_cost(za, zb, alpha=float(cfg.alpha), band_rad=cfg.band_rad)

        cells: List[Salient] = score_cells(za, zb, res.path, res.cost, cfg=cfg)
        picked = select_non_crossing(cells, min_separation=int(cfg.min_separation), limit=max(0, limit))

        out = [
            AlignmentCandidate(
                ref_depth=float(reference.positions[s.i]),
                target_depth=float(target.positions[s.j]),
                confidence=float(s.confidence),
                kind=s.kind,
            )
            for s in picked
        ]
        out.sort(key=lambda c: (-c.confidence, c.ref_depth))

        logger.debug(
            "DTW %s~%s: shape=(%d,%d) steps=%d cost/step=%.4f salient=%d kept=%d",
            reference.label,
            target.label,
            len(reference),
            len(target),
            int(res.path.shape[0]),
            res.cost_per_step,
            len(cells),
            len(out),
        )
        return AlignmentResult(dtw=res, candidates=out)

    def suggest(
        self,
        reference: ProxySeries,
        target: ProxySeries,
        max_suggestions: int = 7,
    ) -> List[AlignmentCandidate]:
        """
        Ranked, order-preserving tie-point suggestions.

        Short (< cfg.min_points) or flat series yield an empty list: there is
        not enough signal to correlate. Use `align` to see NoVariance raised.
        """
        try:
            res = self.align(reference, target, max_suggestions=max_suggestions)
        except NoVariance as e:
            logger.info("No suggestions: %s", e)
            return []
        return [] if res is None else res.candidates
