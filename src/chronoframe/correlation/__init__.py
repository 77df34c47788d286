# src/chronoframe/correlation/__init__.py
from __future__ import annotations

"""
Correlation subpackage = banded DTW + salience scoring + suggestions.
"""

from .aligner import AlignmentResult, CurveAligner, SuggestionStrategy
from .dtw import BandedCost, DtwResult, dtw_path_and_cost

__all__ = [
    "AlignmentResult",
    "CurveAligner",
    "SuggestionStrategy",
    "BandedCost",
    "DtwResult",
    "dtw_path_and_cost",
]
