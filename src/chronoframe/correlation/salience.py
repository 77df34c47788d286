# src/chronoframe/correlation/salience.py
from __future__ import annotations

"""
High-salience correspondences along a DTW warping path.

Two kinds of path cells are kept:
  - "slope":    the local slope of the path turns sharply (a clear, local
                change of relative sedimentation rate between the records)
                and both series actually move there
  - "extremum": both series pass through a peak/trough of the same kind
                within the matched window; the target side is snapped onto
                its most prominent extremum in that window

Confidence (0-100) is a blend of
  (a) 1 - local DTW cost around the cell, normalised over the band
  (b) agreement of the two series' local curvature sign
scaled by the signal salience of the cell in the weaker of the two series:
the local z-range over slope_window for slope cells, the extremum prominence
for extremum cells (both as fractions of the series' full range).
100 is reserved for extremum-to-extremum matches whose local cost is ~0.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np
from scipy.signal import find_peaks

from chronoframe.config.schema import AlignConfig

from .dtw import BandedCost


@dataclass(frozen=True)
class Salient:
    i: int          # reference index
    j: int          # target index
    kind: str       # "extremum" | "slope"
    confidence: float


def slope_change_cells(path: np.ndarray, *, h: int, min_change: float) -> List[int]:
    """
    Path step indices k where |theta_after - theta_before| over h steps is a
    local maximum and at least min_change (radians).
    """
    P = np.asarray(path, dtype="float64")
    K = int(P.shape[0])
    h = max(1, int(h))
    if K < 2 * h + 1:
        return []

    ks = np.arange(h, K - h)
    back = P[ks] - P[ks - h]
    fwd = P[ks + h] - P[ks]
    th_b = np.arctan2(back[:, 1], back[:, 0])
    th_f = np.arctan2(fwd[:, 1], fwd[:, 0])
    change = np.abs(th_f - th_b)

    out: List[int] = []
    for n, k in enumerate(ks.tolist()):
        c = float(change[n])
        if c < float(min_change):
            continue
        lo = max(0, n - h)
        hi = min(change.size, n + h + 1)
        # first index of the local maximum wins plateaus
        if int(np.argmax(change[lo:hi])) + lo == n:
            out.append(int(k))
    return out


def local_amplitude(z: np.ndarray, h: int) -> np.ndarray:
    """Range of z over each +-h sample window, as a fraction of the full range."""
    z = np.asarray(z, dtype="float64").reshape(-1)
    h = max(1, int(h))
    full = float(np.ptp(z))
    if full <= 0.0:
        return np.zeros(z.size)
    win = np.lib.stride_tricks.sliding_window_view(np.pad(z, h, mode="edge"), 2 * h + 1)
    return (win.max(axis=1) - win.min(axis=1)) / full


def extrema(z: np.ndarray, *, prominence: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """(peaks, peak prominences, troughs, trough prominences) of a normalized series."""
    peaks, pp = find_peaks(z, prominence=float(prominence))
    troughs, tp = find_peaks(-z, prominence=float(prominence))
    return (
        peaks.astype("int64"),
        np.asarray(pp["prominences"], dtype="float64"),
        troughs.astype("int64"),
        np.asarray(tp["prominences"], dtype="float64"),
    )


def curvature(z: np.ndarray) -> np.ndarray:
    return np.gradient(np.gradient(np.asarray(z, dtype="float64")))


def _local_cost(cost: BandedCost, path: np.ndarray, k: int, w: int, i: int, j: int) -> float:
    lo = max(0, k - w)
    hi = min(int(path.shape[0]), k + w + 1)
    vals = [cost.at(int(p), int(q)) for p, q in path[lo:hi].tolist()]
    if cost.contains(i, j):
        vals.append(cost.at(i, j))
    return float(np.mean(vals))


def _curvature_agreement(ci: float, cj: float, tol: float) -> float:
    if abs(ci) <= tol or abs(cj) <= tol:
        return 0.5
    return 1.0 if np.sign(ci) == np.sign(cj) else 0.0


def score_cells(
    za: np.ndarray,
    zb: np.ndarray,
    path: np.ndarray,
    cost: BandedCost,
    *,
    cfg: AlignConfig,
) -> List[Salient]:
    """
    Collect slope-change and extremum cells along `path` and score them.
    Multiple hits on one reference index keep the best-scoring one.
    """
    path = np.asarray(path, dtype="int64")
    band = cost.finite()
    cmin = float(band.min())
    crange = float(band.max()) - cmin
    curv_a = curvature(za)
    curv_b = curvature(zb)
    w = max(0, int(cfg.cost_window))
    tol = float(cfg.curvature_tol)

    def confidence(k: int, i: int, j: int, salience: float, is_extremum: bool) -> float:
        c = _local_cost(cost, path, k, w, i, j)
        c_norm = 0.0 if crange <= 0.0 else (c - cmin) / crange
        c_score = float(np.clip(1.0 - c_norm, 0.0, 1.0))
        agree = _curvature_agreement(float(curv_a[i]), float(curv_b[j]), tol)
        if is_extremum and agree == 1.0 and c_norm <= float(cfg.exact_cost_tol):
            return 100.0
        blend = float(cfg.cost_weight) * c_score + (1.0 - float(cfg.cost_weight)) * agree
        sal = float(np.clip(salience, 0.0, 1.0))
        return float(min(99.0, round(100.0 * blend * sal, 2)))

    best: Dict[int, Salient] = {}

    def keep(s: Salient) -> None:
        cur = best.get(s.i)
        if cur is None or s.confidence > cur.confidence:
            best[s.i] = s

    # slope-change cells where both records move
    amp_a = local_amplitude(za, int(cfg.slope_window))
    amp_b = local_amplitude(zb, int(cfg.slope_window))
    for k in slope_change_cells(path, h=int(cfg.slope_window), min_change=float(cfg.slope_change_min)):
        i, j = int(path[k, 0]), int(path[k, 1])
        sal = min(float(amp_a[i]), float(amp_b[j]))
        if sal < float(cfg.min_local_amplitude):
            continue
        keep(Salient(i=i, j=j, kind="slope", confidence=confidence(k, i, j, sal, False)))

    # extremum-to-extremum cells
    pk_a, pp_a, tr_a, tp_a = extrema(za, prominence=float(cfg.extremum_prominence))
    pk_b, pp_b, tr_b, tp_b = extrema(zb, prominence=float(cfg.extremum_prominence))
    span_a = float(np.ptp(za)) or 1.0
    span_b = float(np.ptp(zb)) or 1.0
    win = max(0, int(cfg.extremum_window))
    first_k: Dict[int, int] = {}
    for k, i in enumerate(path[:, 0].tolist()):
        first_k.setdefault(int(i), k)

    for ext_a, prom_a, ext_b, prom_b in ((pk_a, pp_a, pk_b, pp_b), (tr_a, tp_a, tr_b, tp_b)):
        if ext_a.size == 0 or ext_b.size == 0:
            continue
        for i, pa in zip(ext_a.tolist(), prom_a.tolist()):
            k = first_k.get(int(i))
            if k is None:
                continue
            j_path = path[path[:, 0] == i, 1]
            d = np.abs(ext_b[:, None] - j_path[None, :]).min(axis=1)
            near = np.flatnonzero(d <= win)
            if near.size == 0:
                continue
            # most prominent same-kind target extremum in the window, nearest on ties
            n = int(min(near.tolist(), key=lambda q: (-float(prom_b[q]), int(d[q]), int(ext_b[q]))))
            j = int(ext_b[n])
            sal = min(float(pa) / span_a, float(prom_b[n]) / span_b)
            keep(Salient(i=int(i), j=j, kind="extremum", confidence=confidence(k, int(i), j, sal, True)))

    return list(best.values())


def select_non_crossing(cands: List[Salient], *, min_separation: int, limit: int) -> List[Salient]:
    """
    Greedy: strongest first (confidence desc, reference index asc), dropping any
    candidate that would cross or crowd an already accepted one.
    """
    ordered = sorted(cands, key=lambda s: (-s.confidence, s.i, s.j))
    out: List[Salient] = []
    sep = max(0, int(min_separation))
    for s in ordered:
        if len(out) >= int(limit):
            break
        ok = True
        for a in out:
            if abs(s.i - a.i) < max(1, sep):
                ok = False
                break
            if (s.i < a.i and s.j > a.j) or (s.i > a.i and s.j < a.j):
                ok = False
                break
        if ok:
            out.append(s)
    return out
