# src/chronoframe/agemodel/monotonic.py
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from chronoframe.errors import InvalidDepthRange, NonMonotonicTiePoints
from chronoframe.chronolog.model import TiePoint


def sort_tie_points(tie_points: Sequence[TiePoint]) -> List[TiePoint]:
    # stable: equal depths keep caller order, so the reported pair is deterministic
    return sorted(tie_points, key=lambda t: float(t.depth))


def check_tie_points(
    tie_points: Sequence[TiePoint],
    *,
    section_id: Optional[str] = None,
    depth_range: Optional[Tuple[float, float]] = None,
) -> List[TiePoint]:
    """
    Validate a section's tie points and return them sorted by depth.

    Raises:
      InvalidDepthRange      if a tie point is non-finite or outside depth_range
      NonMonotonicTiePoints  for the first adjacent pair (by depth) whose depth
                             or age does not strictly increase
    """
    for tp in tie_points:
        if not (np.isfinite(tp.depth) and np.isfinite(tp.age)):
            raise InvalidDepthRange(section_id, tp, depth_range)
        if depth_range is None or not (depth_range[0] <= float(tp.depth) <= depth_range[1]):
            raise InvalidDepthRange(section_id, tp, depth_range)

    tps = sort_tie_points(tie_points)
    for a, b in zip(tps[:-1], tps[1:]):
        if not (float(a.depth) < float(b.depth) and float(a.age) < float(b.age)):
            raise NonMonotonicTiePoints(section_id, a, b)
    return tps


def reversal_mask(
    values: np.ndarray,
    *,
    atol: float = 1e-10,
    rtol: float = 1e-8,
) -> np.ndarray:
    """
    Boolean mask of samples that fall below the running maximum.

    Ages must not decrease with depth. Nothing here flattens or reorders:
    violations are reported and the caller decides.

    Notes:
      - Only finite samples are considered; NaNs are never flagged.
      - Uses tolerant float comparison to avoid spurious flags.
    """
    x = np.asarray(values, dtype="float64")
    rev = np.zeros_like(x, dtype=bool)
    fin = np.isfinite(x)
    if fin.sum() <= 1:
        return rev

    xf = x[fin]
    env = np.maximum.accumulate(xf)
    rev[np.where(fin)[0]] = ~np.isclose(env, xf, atol=float(atol), rtol=float(rtol))
    return rev

