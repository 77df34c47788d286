# src/chronoframe/chronolog/__init__.py
from __future__ import annotations

from .model import AgeRange, AlignmentCandidate, CompositeSample, ProxySeries, Sample, Section, TiePoint
from .shared import DEFAULT_PROXY_PRIORITY, available_proxies, resolve_proxy_hint

__all__ = [
    "AgeRange",
    "AlignmentCandidate",
    "CompositeSample",
    "ProxySeries",
    "Sample",
    "Section",
    "TiePoint",
    "DEFAULT_PROXY_PRIORITY",
    "available_proxies",
    "resolve_proxy_hint",
]
