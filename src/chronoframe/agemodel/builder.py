# src/chronoframe/agemodel/builder.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import PchipInterpolator

from chronoframe.chronolog.model import Sample, Section, TiePoint
from chronoframe.chronolog.shared import resolve_proxy_hint
from chronoframe.config.schema import AgeModelConfig
from chronoframe.errors import InsufficientTiePoints
from chronoframe.utils.fingerprint import sha1_payload

from .monotonic import check_tie_points, reversal_mask
from .proxy_weighting import ProxyWarp, build_proxy_warp

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class AgeModel:
    """
    Immutable depth -> age snapshot for one section.

    Inside the tie-point span: monotone cubic (PCHIP) through the tie points in
    effective depth u (plain depth, or proxy arc length when tuned).
    Outside: straight line through the nearest two tie points, flagged as
    extrapolated.
    """
    section_id: Optional[str]
    tie_points: Tuple[TiePoint, ...]
    proxy_hint: Optional[str]
    warp: Optional[ProxyWarp]
    fingerprint: str

    def __post_init__(self) -> None:
        z = self.tie_depths
        u = self.warp(z) if self.warp is not None else z
        object.__setattr__(self, "_interp", PchipInterpolator(u, self.tie_ages, extrapolate=False))

    @property
    def tie_depths(self) -> np.ndarray:
        return np.asarray([t.depth for t in self.tie_points], dtype="float64")

    @property
    def tie_ages(self) -> np.ndarray:
        return np.asarray([t.age for t in self.tie_points], dtype="float64")

    @property
    def depth_domain(self) -> Tuple[float, float]:
        return (float(self.tie_points[0].depth), float(self.tie_points[-1].depth))

    def __call__(self, depth: Any) -> Any:
        scalar = np.ndim(depth) == 0
        z = np.atleast_1d(np.asarray(depth, dtype="float64"))
        zt = self.tie_depths
        at = self.tie_ages

        out = np.full(z.shape, np.nan, dtype="float64")
        fin = np.isfinite(z)
        inside = fin & (z >= zt[0]) & (z <= zt[-1])
        above = fin & (z < zt[0])
        below = fin & (z > zt[-1])

        if inside.any():
            u = self.warp(z[inside]) if self.warp is not None else z[inside]
            # roundoff only; PCHIP through increasing data cannot leave [a0, aN]
            out[inside] = np.clip(self._interp(u), at[0], at[-1])
        if above.any():
            out[above] = at[0] + (z[above] - zt[0]) * (at[1] - at[0]) / (zt[1] - zt[0])
        if below.any():
            out[below] = at[-1] + (z[below] - zt[-1]) * (at[-1] - at[-2]) / (zt[-1] - zt[-2])

        # tie points are reproduced exactly
        hit = np.searchsorted(zt, z)
        hit = np.clip(hit, 0, zt.size - 1)
        exact = fin & (zt[hit] == z)
        out[exact] = at[hit[exact]]

        return float(out[0]) if scalar else out

    def is_extrapolated(self, depth: Any) -> Any:
        z = np.asarray(depth, dtype="float64")
        lo, hi = self.depth_domain
        m = np.isfinite(z) & ((z < lo) | (z > hi))
        return bool(m) if np.ndim(m) == 0 else m

    def params(self) -> Dict[str, Any]:
        """Plain, JSON-friendly parameters for optional caching by a persistence layer."""
        return {
            "section_id": self.section_id,
            "tie_points": [[float(t.depth), float(t.age)] for t in self.tie_points],
            "proxy_hint": self.proxy_hint,
            "warp": None
            if self.warp is None
            else {
                "nodes_z": self.warp.nodes_z.tolist(),
                "nodes_u": self.warp.nodes_u.tolist(),
                "tuned_intervals": list(self.warp.tuned_intervals),
            },
            "fingerprint": self.fingerprint,
        }


def _fingerprint(section_id: Optional[str], tps: Sequence[TiePoint], proxy_hint: Optional[str], warp: Optional[ProxyWarp]) -> str:
    payload = {
        "section_id": section_id,
        "tie_points": [[float(t.depth), float(t.age)] for t in tps],
        "proxy_hint": proxy_hint,
    }
    arrays = [warp.nodes_z, warp.nodes_u] if warp is not None else None
    return sha1_payload(payload, arrays=arrays)


class AgeModelBuilder:
    """
    Converts a section's tie points (+ optional proxy series) into an AgeModel
    and applies it to the section's samples.

    All-or-nothing: any violated invariant raises and no sample gets an age.
    """

    def __init__(self, cfg: AgeModelConfig = AgeModelConfig()) -> None:
        self.cfg = cfg

    def build(
        self,
        samples: Sequence[Sample],
        tie_points: Sequence[TiePoint],
        proxy_hint: Optional[str] = None,
        *,
        section_id: Optional[str] = None,
    ) -> AgeModel:
        if section_id is None:
            ids = {t.section_id for t in tie_points} | {s.section_id for s in samples}
            section_id = next(iter(ids)) if len(ids) == 1 else None

        if len(tie_points) < 2:
            raise InsufficientTiePoints(section_id, len(tie_points))

        depths = [float(s.depth) for s in samples if s.depth is not None]
        depth_range = (min(depths), max(depths)) if depths else None
        tps = check_tie_points(tie_points, section_id=section_id, depth_range=depth_range)

        warp: Optional[ProxyWarp] = None
        if proxy_hint:
            warp = build_proxy_warp(
                samples,
                np.asarray([t.depth for t in tps], dtype="float64"),
                proxy_hint,
                gain=float(self.cfg.proxy_gain),
                min_coverage=float(self.cfg.min_proxy_coverage),
                min_samples=int(self.cfg.min_proxy_samples),
                percentiles=tuple(self.cfg.scale_percentiles),  # type: ignore[arg-type]
            )
            if warp is None:
                logger.warning(
                    "Section %r: proxy %r unusable for tuning (absent, sparse or flat); using depth only.",
                    section_id,
                    proxy_hint,
                )
        used_hint = proxy_hint if warp is not None else None

        logger.debug(
            "Section %r: %d tie points, proxy=%r, tuned intervals=%s",
            section_id,
            len(tps),
            used_hint,
            None if warp is None else list(warp.tuned_intervals),
        )
        return AgeModel(
            section_id=section_id,
            tie_points=tuple(tps),
            proxy_hint=used_hint,
            warp=warp,
            fingerprint=_fingerprint(section_id, tps, used_hint, warp),
        )

    def apply(self, samples: Sequence[Sample], model: AgeModel) -> Tuple[Sample, ...]:
        """
        Every sample with a depth gets age = model(depth) and its extrapolated flag;
        samples without a depth are returned unchanged.
        """
        idx = [i for i, s in enumerate(samples) if s.depth is not None]
        out: List[Sample] = list(samples)
        if not idx:
            return tuple(out)

        z = np.asarray([samples[i].depth for i in idx], dtype="float64")
        ages = np.asarray(model(z), dtype="float64")
        extra = np.asarray(model.is_extrapolated(z), dtype=bool)

        order = np.argsort(z, kind="mergesort")
        if reversal_mask(ages[order]).any():
            raise RuntimeError(f"Age model for section {model.section_id!r} produced an age inversion.")

        for k, i in enumerate(idx):
            out[i] = samples[i].with_age(float(ages[k]), extrapolated=bool(extra[k]))
        return tuple(out)

    def calibrate(
        self,
        section: Section,
        tie_points: Sequence[TiePoint],
        proxy_hint: Optional[str] = None,
        *,
        auto_proxy: bool = False,
        proxy_priority: Optional[Sequence[str]] = None,
    ) -> Tuple[Section, AgeModel]:
        """
        Build + apply for one section. Tie points of other sections are ignored.
        With auto_proxy and no hint, the first priority proxy the section carries is used.
        """
        own = [t for t in tie_points if t.section_id == section.id]
        if proxy_hint is None and auto_proxy:
            proxy_hint = resolve_proxy_hint(section, priority=proxy_priority)
        model = self.build(section.samples, own, proxy_hint, section_id=section.id)
        return section.with_samples(self.apply(section.samples, model)), model

    @staticmethod
    def from_params(params: Dict[str, Any]) -> AgeModel:
        """Rebuild a cached model. The fingerprint is recomputed, never trusted."""
        sid = params.get("section_id")
        tps = tuple(TiePoint("" if sid is None else str(sid), float(d), float(a)) for d, a in params["tie_points"])
        w = params.get("warp")
        warp = None
        if w:
            warp = ProxyWarp(
                nodes_z=np.asarray(w["nodes_z"], dtype="float64"),
                nodes_u=np.asarray(w["nodes_u"], dtype="float64"),
                tuned_intervals=tuple(int(k) for k in w.get("tuned_intervals", [])),
            )
        hint = params.get("proxy_hint") if warp is not None else None
        return AgeModel(
            section_id=sid,
            tie_points=tps,
            proxy_hint=hint,
            warp=warp,
            fingerprint=_fingerprint(sid, tps, hint, warp),
        )
