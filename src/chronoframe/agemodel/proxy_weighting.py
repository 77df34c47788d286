# src/chronoframe/agemodel/proxy_weighting.py
from __future__ import annotations

"""
Proxy-weighted depth reparameterisation.

Between two tie points the age span is shared out in proportion to arc length
of the proxy curve in normalised (depth, proxy) space:

    du = sqrt( (dz / Z)^2 + (gain * dp / P)^2 )

Z is the tie-point depth span and P a robust proxy scale (p_hi - p_lo
percentiles over the section, the same percentile scaling used for curve
normalisation). A flat proxy gives du proportional to dz (plain depth); a rapid
excursion adds length, so it receives proportionally more of the age span.
u(z) is strictly increasing because dz > 0 between distinct nodes, so any
monotone interpolant in u stays monotone in z.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from chronoframe.chronolog.model import Sample


@dataclass(frozen=True)
class ProxyWarp:
    """
    Piecewise-linear map depth -> effective depth u over the tie-point span.
    """
    nodes_z: np.ndarray
    nodes_u: np.ndarray
    tuned_intervals: Tuple[int, ...]

    def __call__(self, z: np.ndarray) -> np.ndarray:
        return np.interp(np.asarray(z, dtype="float64"), self.nodes_z, self.nodes_u)


def robust_scale(values: np.ndarray, *, percentiles: Tuple[float, float] = (1.0, 99.0)) -> float:
    v = np.asarray(values, dtype="float64")
    v = v[np.isfinite(v)]
    if v.size < 2:
        return 0.0
    lo, hi = np.percentile(v, [float(percentiles[0]), float(percentiles[1])])
    return float(hi - lo)


def _proxy_profile(samples: Sequence[Sample], proxy: str) -> Tuple[np.ndarray, np.ndarray]:
    # Unique depths with a finite proxy value; duplicate depths keep the first row.
    z: List[float] = []
    p: List[float] = []
    for s in samples:
        if s.depth is None:
            continue
        v = s.value(proxy)
        if v is None:
            continue
        z.append(float(s.depth))
        p.append(v)
    if not z:
        return np.zeros(0, dtype="float64"), np.zeros(0, dtype="float64")
    zz = np.asarray(z, dtype="float64")
    pp = np.asarray(p, dtype="float64")
    order = np.argsort(zz, kind="mergesort")
    zz, pp = zz[order], pp[order]
    zu, idx = np.unique(zz, return_index=True)
    return zu, pp[idx]


def _interval_coverage(samples: Sequence[Sample], proxy: str, z0: float, z1: float) -> Tuple[float, int]:
    n = 0
    hit = 0
    for s in samples:
        if s.depth is None or not (z0 <= float(s.depth) <= z1):
            continue
        n += 1
        if s.value(proxy) is not None:
            hit += 1
    return (float(hit) / float(n) if n else 0.0), hit


def build_proxy_warp(
    samples: Sequence[Sample],
    tie_depths: np.ndarray,
    proxy: str,
    *,
    gain: float = 1.0,
    min_coverage: float = 0.5,
    min_samples: int = 3,
    percentiles: Tuple[float, float] = (1.0, 99.0),
) -> Optional[ProxyWarp]:
    """
    Returns None when no tie interval qualifies for tuning (proxy absent, too
    sparse, or flat over the section); the caller then interpolates in depth.
    """
    td = np.asarray(tie_depths, dtype="float64")
    if td.size < 2 or gain <= 0.0:
        return None

    pz, pv = _proxy_profile(samples, proxy)
    scale = robust_scale(pv, percentiles=percentiles)
    if pz.size < 2 or not np.isfinite(scale) or scale <= 0.0:
        return None

    span = float(td[-1] - td[0])
    tuned: List[int] = []
    nodes_z: List[float] = [float(td[0])]
    nodes_u: List[float] = [0.0]

    for k in range(td.size - 1):
        z0, z1 = float(td[k]), float(td[k + 1])
        cov, n_hit = _interval_coverage(samples, proxy, z0, z1)
        use = cov > float(min_coverage) and n_hit >= int(min_samples)

        inner = pz[(pz > z0) & (pz < z1)] if use else np.zeros(0, dtype="float64")
        zk = np.concatenate([[z0], inner, [z1]])
        du = np.diff(zk) / span
        if use:
            # np.interp edge-holds outside the profile, so the ties need no proxy sample of their own
            pk = np.interp(zk, pz, pv)
            du = np.sqrt(du * du + (float(gain) * np.diff(pk) / scale) ** 2)
            tuned.append(k)

        u0 = nodes_u[-1]
        nodes_z.extend(zk[1:].tolist())
        nodes_u.extend((u0 + np.cumsum(du)).tolist())

    if not tuned:
        return None

    return ProxyWarp(
        nodes_z=np.asarray(nodes_z, dtype="float64"),
        nodes_u=np.asarray(nodes_u, dtype="float64"),
        tuned_intervals=tuple(tuned),
    )
