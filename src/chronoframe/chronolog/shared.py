# src/chronoframe/chronolog/shared.py
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from .model import Sample, Section


# Proxies tried, in order, when a caller asks for automatic age-model tuning.
DEFAULT_PROXY_PRIORITY: Tuple[str, ...] = ("delta18O", "temperature", "calculatedSST", "alkenoneSST", "tex86")

# Keys that are sample coordinates, never proxies.
RESERVED_KEYS: Tuple[str, ...] = ("depth", "age", "subsection", "section_id", "extrapolated")


def norm_proxy_key(key: str) -> str:
    return (key or "").strip()


def proxy_coverage(samples: Iterable[Sample], proxy: str) -> float:
    """Fraction of depth-bearing samples that carry a finite value for `proxy`."""
    n = 0
    hit = 0
    for s in samples:
        if s.depth is None:
            continue
        n += 1
        if s.value(proxy) is not None:
            hit += 1
    return float(hit) / float(n) if n else 0.0


def resolve_proxy_hint(
    section: Section,
    *,
    priority: Optional[Sequence[str]] = None,
    min_coverage: float = 0.0,
) -> Optional[str]:
    """
    Return the first proxy from `priority` that the section actually carries.

    - Uses DEFAULT_PROXY_PRIORITY when `priority` is None.
    - A proxy qualifies when its coverage is > min_coverage.
    """
    cands = [norm_proxy_key(p) for p in (priority if priority is not None else DEFAULT_PROXY_PRIORITY)]
    for p in cands:
        if p and p not in RESERVED_KEYS and proxy_coverage(section.samples, p) > float(min_coverage):
            return p
    return None


def available_proxies(sections: Iterable[Section]) -> List[str]:
    seen: List[str] = []
    for sec in sections:
        for k in sec.proxies():
            if k not in RESERVED_KEYS and k not in seen:
                seen.append(k)
    return seen
