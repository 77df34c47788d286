from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class AgeModelConfig:
    # Weight of proxy variation against depth in the arc length (0 => depth only)
    proxy_gain: float = 1.0
    # An interval is tuned only when more than this fraction of its samples carry the proxy
    min_proxy_coverage: float = 0.5
    min_proxy_samples: int = 3
    # Robust proxy scale: p_hi - p_lo
    scale_percentiles: Tuple[float, float] = (1.0, 99.0)


@dataclass(frozen=True)
class AlignConfig:
    # Local distance |a - b|^alpha on z-scored series
    alpha: float = 1.0
    # Sakoe-Chiba band radius, fraction of the shorter series. None => unconstrained.
    band_rad: Optional[float] = 0.25
    min_points: int = 5
    max_suggestions: int = 7

    # Salience extraction (units: path steps / samples / z units / radians)
    slope_window: int = 3
    slope_change_min: float = 0.35
    # Slope cells whose local range (fraction of the full range) is below this are noise
    min_local_amplitude: float = 0.15
    extremum_prominence: float = 0.5
    extremum_window: int = 5
    min_separation: int = 3

    # Confidence blend
    cost_window: int = 2
    cost_weight: float = 0.7
    exact_cost_tol: float = 0.01
    curvature_tol: float = 1e-9


@dataclass(frozen=True)
class SpliceConfig:
    # Sections with fewer dated samples than this inside an interval cannot win it
    min_gap_samples: int = 1


@dataclass(frozen=True)
class WorkflowConfig:
    # Tie points closer than this (depth units) are the same tie point
    dedupe_eps: float = 1.0
    proxy_priority: Tuple[str, ...] = ("delta18O", "temperature", "calculatedSST", "alkenoneSST", "tex86")
    auto_proxy: bool = True


@dataclass(frozen=True)
class RunConfig:
    age_model: AgeModelConfig = field(default_factory=AgeModelConfig)
    align: AlignConfig = field(default_factory=AlignConfig)
    splice: SpliceConfig = field(default_factory=SpliceConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
