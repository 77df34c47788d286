# src/chronoframe/agemodel/__init__.py
from __future__ import annotations

"""
chronoframe.agemodel

Depth -> age models. Imports are lazy so that the data model and the
tie-point checks stay usable without pulling in scipy.
"""

from importlib import import_module
from typing import Any

__all__ = [
    "AgeModel",
    "AgeModelBuilder",
    "check_tie_points",
    "build_proxy_warp",
]


def __getattr__(name: str) -> Any:
    if name in ("AgeModel", "AgeModelBuilder"):
        m = import_module("chronoframe.agemodel.builder")
        return getattr(m, name)

    if name == "check_tie_points":
        m = import_module("chronoframe.agemodel.monotonic")
        return getattr(m, name)

    if name == "build_proxy_warp":
        m = import_module("chronoframe.agemodel.proxy_weighting")
        return getattr(m, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
