# src/chronoframe/chronolog/model.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Sample:
    """
    One depth-indexed measurement row of a section.

    `values` maps proxy name -> value (None for a missing measurement).
    `age` and `extrapolated` stay unset until an age model is applied.
    """
    section_id: str
    depth: Optional[float]
    values: Mapping[str, Optional[float]] = field(default_factory=dict)
    age: Optional[float] = None
    extrapolated: bool = False

    def value(self, proxy: str) -> Optional[float]:
        v = self.values.get(proxy)
        if v is None:
            return None
        v = float(v)
        return v if np.isfinite(v) else None

    def with_age(self, age: Optional[float], *, extrapolated: bool = False) -> "Sample":
        return replace(self, age=age, extrapolated=bool(extrapolated))


@dataclass(frozen=True)
class TiePoint:
    section_id: str
    depth: float
    age: float

    def __str__(self) -> str:
        return f"({self.depth:g} m, {self.age:g} ka)"


@dataclass(frozen=True)
class AgeRange:
    start: float
    end: float

    @classmethod
    def of(cls, value: "AgeRange | Tuple[float, float] | Sequence[float]") -> "AgeRange":
        """Accepts an AgeRange or a 2-sequence; reversed bounds are normalised."""
        if isinstance(value, AgeRange):
            a, b = value.start, value.end
        else:
            a, b = value
        a, b = float(a), float(b)
        return cls(min(a, b), max(a, b))

    def as_tuple(self) -> Tuple[float, float]:
        return (self.start, self.end)

    def overlaps(self, other: "AgeRange") -> bool:
        # Touching at a single age is allowed; identical ranges are not.
        if self.start == other.start and self.end == other.end:
            return True
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class Section:
    id: str
    samples: Tuple[Sample, ...] = ()
    name: str = ""

    @classmethod
    def from_rows(
        cls,
        section_id: str,
        rows: Iterable[Mapping[str, Optional[float]]],
        *,
        depth_key: str = "depth",
        name: str = "",
    ) -> "Section":
        """Build a section from dict rows (`depth` plus proxy columns), sorted by depth."""
        samples: List[Sample] = []
        for r in rows:
            d = r.get(depth_key)
            values = {k: v for k, v in r.items() if k not in (depth_key, "age")}
            samples.append(Sample(section_id=str(section_id), depth=None if d is None else float(d), values=values))
        return cls(id=str(section_id), samples=_sort_samples(samples), name=name)

    def depth_range(self) -> Optional[Tuple[float, float]]:
        z = self.depths()
        if z.size == 0:
            return None
        return (float(z.min()), float(z.max()))

    def depths(self) -> np.ndarray:
        return np.asarray([s.depth for s in self.samples if s.depth is not None], dtype="float64")

    def proxies(self) -> List[str]:
        seen: Dict[str, None] = {}
        for s in self.samples:
            for k in s.values:
                seen.setdefault(k, None)
        return list(seen)

    def has_ages(self) -> bool:
        return any(s.age is not None for s in self.samples)

    def age_range(self) -> Optional[Tuple[float, float]]:
        a = [float(s.age) for s in self.samples if s.age is not None]
        if not a:
            return None
        return (min(a), max(a))

    def with_samples(self, samples: Sequence[Sample]) -> "Section":
        return replace(self, samples=tuple(samples))

    def series(self, proxy: str) -> "ProxySeries":
        return ProxySeries.from_samples(self.samples, proxy, label=f"{self.id}:{proxy}")


def _sort_samples(samples: Sequence[Sample]) -> Tuple[Sample, ...]:
    # Stable: depthless samples keep their relative order at the end.
    with_depth = sorted((s for s in samples if s.depth is not None), key=lambda s: float(s.depth))
    without = [s for s in samples if s.depth is None]
    return tuple(with_depth + without)


@dataclass(frozen=True, eq=False)
class ProxySeries:
    """
    Position-ordered (depth, value) pairs with no missing values.
    """
    positions: np.ndarray
    values: np.ndarray
    label: str = ""

    def __post_init__(self) -> None:
        z = np.asarray(self.positions, dtype="float64").reshape(-1)
        v = np.asarray(self.values, dtype="float64").reshape(-1)
        if z.size != v.size:
            raise ValueError(f"positions/values length mismatch: {z.size} != {v.size}")
        if not (np.all(np.isfinite(z)) and np.all(np.isfinite(v))):
            raise ValueError(f"Series {self.label!r} contains non-finite entries; filter them first.")
        if z.size > 1 and np.any(np.diff(z) < 0):
            raise ValueError(f"Series {self.label!r} positions must be non-decreasing.")
        object.__setattr__(self, "positions", z)
        object.__setattr__(self, "values", v)

    @classmethod
    def from_samples(
        cls,
        samples: Iterable[Sample],
        proxy: str,
        *,
        label: str = "",
    ) -> "ProxySeries":
        """Filters out samples lacking the depth or the proxy value."""
        z: List[float] = []
        v: List[float] = []
        for s in samples:
            val = s.value(proxy)
            if s.depth is None or val is None:
                continue
            z.append(float(s.depth))
            v.append(val)
        order = np.argsort(np.asarray(z, dtype="float64"), kind="mergesort")
        return cls(np.asarray(z, dtype="float64")[order], np.asarray(v, dtype="float64")[order], label=label or proxy)

    def __len__(self) -> int:
        return int(self.positions.size)


@dataclass(frozen=True)
class AlignmentCandidate:
    ref_depth: float
    target_depth: float
    confidence: float
    kind: str = "slope"  # "extremum" | "slope"


@dataclass(frozen=True)
class CompositeSample:
    age: float
    source_section_id: str
    values: Mapping[str, Optional[float]]
    depth: Optional[float] = None
