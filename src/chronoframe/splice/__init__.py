# src/chronoframe/splice/__init__.py
from __future__ import annotations

from .composer import SpliceComposer
from .coverage import CoverageInterval, default_coverage, explicit_coverage

__all__ = [
    "SpliceComposer",
    "CoverageInterval",
    "default_coverage",
    "explicit_coverage",
]
