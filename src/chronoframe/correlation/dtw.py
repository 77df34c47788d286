# src/chronoframe/correlation/dtw.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class BandedCost:
    """
    Local costs stored row by row inside a Sakoe-Chiba band.

    Row i holds target indices lo[i]..hi[i] (inclusive) at offsets 0..hi[i]-lo[i]
    of values[i]; the rest of the row is +inf padding.
    """

    lo: np.ndarray       # (N,) int64
    hi: np.ndarray       # (N,) int64
    values: np.ndarray   # (N,W) float64
    n_target: int

    @property
    def shape(self) -> Tuple[int, int]:
        return int(self.lo.size), int(self.n_target)

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    def contains(self, i: int, j: int) -> bool:
        return 0 <= i < self.lo.size and int(self.lo[i]) <= j <= int(self.hi[i])

    def at(self, i: int, j: int) -> float:
        if not self.contains(i, j):
            return float("inf")
        return float(self.values[i, j - int(self.lo[i])])

    def finite(self) -> np.ndarray:
        """Costs of every in-band cell, flattened."""
        return self.values[np.isfinite(self.values)]


@dataclass(frozen=True)
class DtwResult:
    total_cost: float
    path: np.ndarray        # (K,2) forward order, (i_ref, j_target)
    cost: BandedCost

    @property
    def cost_per_step(self) -> float:
        return float(self.total_cost / max(1, int(self.path.shape[0])))


def zscore(x: np.ndarray) -> np.ndarray:
    """Zero-mean, unit-variance copy. Caller guarantees non-zero variance."""
    x = np.asarray(x, dtype="float64").reshape(-1)
    return (x - float(x.mean())) / float(x.std())


def band_limits(n: int, m: int, band_rad: Optional[float]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-row [lo, hi] target limits of a Sakoe-Chiba band around the
    (0,0)-(N-1,M-1) diagonal. The radius is band_rad * min(N, M) samples
    (at least 1); None means the whole row.

    Rows are widened where needed so consecutive rows stay connected.
    """
    if n < 1 or m < 1:
        raise ValueError("both series must be non-empty")
    if band_rad is None:
        return np.zeros(n, dtype="int64"), np.full(n, m - 1, dtype="int64")

    br = float(band_rad)
    if not (0.0 < br <= 1.0):
        raise ValueError("band_rad must be in (0, 1]")
    r = max(1, int(round(br * min(n, m))))

    jc = np.arange(n, dtype="float64") * ((m - 1) / float(n - 1) if n > 1 else 0.0)
    lo = np.clip(np.floor(jc - r), 0, m - 1).astype("int64")
    hi = np.clip(np.ceil(jc + r), 0, m - 1).astype("int64")
    lo[0] = 0
    hi[-1] = m - 1
    # a row must start no later than one step right of the previous row's end
    lo[1:] = np.minimum(lo[1:], hi[:-1] + 1)
    return lo, hi


def banded_cost(a: np.ndarray, b: np.ndarray, alpha: float, band_rad: Optional[float]) -> BandedCost:
    """
    Robust local distance inside the band only:
      d = |b - a|^alpha
    alpha < 1 de-emphasizes outliers; alpha = 1 keeps costs linear in z units.
    """
    if alpha <= 0.0:
        raise ValueError("alpha must be > 0")
    a = np.asarray(a, dtype="float64").reshape(-1)
    b = np.asarray(b, dtype="float64").reshape(-1)
    lo, hi = band_limits(int(a.size), int(b.size), band_rad)

    W = int((hi - lo).max()) + 1
    J = lo[:, None] + np.arange(W, dtype="int64")[None, :]
    inside = J <= hi[:, None]
    vals = np.power(np.abs(a[:, None] - b[np.minimum(J, b.size - 1)]), float(alpha))
    vals[~inside] = np.inf
    return BandedCost(lo=lo, hi=hi, values=vals, n_target=int(b.size))


def _accumulate(C: BandedCost) -> np.ndarray:
    """
    Accumulated cost, same banded layout as C. Steps: (1,1), (1,0), (0,1).

    Within a row, D[j] = c[j] + min(V[j], D[j-1]) with V[j] the best of the
    previous row at j-1 and j; that recursion unrolls into a prefix-sum and a
    running minimum, so each row is one vectorised pass.
    """
    n = int(C.lo.size)
    D = np.full(C.values.shape, np.inf)
    for i in range(n):
        L = int(C.hi[i] - C.lo[i]) + 1
        c = C.values[i, :L]
        if i == 0:
            V = np.full(L, np.inf)
            V[0] = 0.0
        else:
            js = C.lo[i] + np.arange(L, dtype="int64")
            V = np.minimum(_row_lookup(C, D, i - 1, js - 1), _row_lookup(C, D, i - 1, js))
        S = np.cumsum(c)
        S_prev = np.concatenate([[0.0], S[:-1]])
        D[i, :L] = S + np.minimum.accumulate(V - S_prev)
    return D


def _row_lookup(C: BandedCost, D: np.ndarray, i: int, js: np.ndarray) -> np.ndarray:
    off = js - int(C.lo[i])
    ok = (off >= 0) & (js <= int(C.hi[i]))
    out = np.full(js.shape, np.inf)
    out[ok] = D[i, off[ok]]
    return out


def _backtrack(C: BandedCost, D: np.ndarray) -> np.ndarray:
    def acc(i: int, j: int) -> float:
        if i < 0 or j < 0 or not C.contains(i, j):
            return float("inf")
        return float(D[i, j - int(C.lo[i])])

    i, j = int(C.lo.size) - 1, int(C.n_target) - 1
    steps: List[Tuple[int, int]] = [(i, j)]
    while i > 0 or j > 0:
        # ties prefer the diagonal, then the reference step
        moves = ((i - 1, j - 1), (i - 1, j), (i, j - 1))
        i, j = min(moves, key=lambda p: acc(p[0], p[1]))
        steps.append((i, j))
    return np.asarray(steps[::-1], dtype="int64")


def dtw_path_and_cost(
    a: np.ndarray,
    b: np.ndarray,
    *,
    alpha: float,
    band_rad: Optional[float] = None,
) -> DtwResult:
    """
    Endpoint-constrained DTW between two already-normalized series.

    Notes:
    - The path runs (0,0) -> (N-1,M-1) by construction.
    - band_rad is the Sakoe-Chiba radius as a fraction of the shorter series.
      Costs and the accumulator exist only inside the band, so time and memory
      are O(N*W) with W the band width, and the warp never leaves the band.
    """
    C = banded_cost(a, b, alpha, band_rad)
    D = _accumulate(C)
    total = float(D[-1, int(C.hi[-1] - C.lo[-1])])
    if not np.isfinite(total):
        raise RuntimeError("DTW found no admissible path; widen band_rad.")

    path = _backtrack(C, D)
    return DtwResult(total_cost=total, path=np.ascontiguousarray(path), cost=C)
