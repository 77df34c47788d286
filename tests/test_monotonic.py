from __future__ import annotations

import numpy as np
import pytest

from chronoframe.agemodel.monotonic import check_tie_points, reversal_mask
from chronoframe.chronolog.model import TiePoint
from chronoframe.errors import ChronologyError, InvalidDepthRange, NonMonotonicTiePoints


def test_check_tie_points_returns_depth_order() -> None:
    tps = [TiePoint("A", 8.0, 80.0), TiePoint("A", 1.0, 10.0), TiePoint("A", 4.0, 30.0)]
    out = check_tie_points(tps, section_id="A", depth_range=(0.0, 10.0))
    assert [t.depth for t in out] == [1.0, 4.0, 8.0]


def test_age_reversal_names_offending_pair() -> None:
    a = TiePoint("A", 1.0, 10.0)
    b = TiePoint("A", 2.0, 5.0)
    with pytest.raises(NonMonotonicTiePoints) as ei:
        check_tie_points([b, a], section_id="A", depth_range=(0.0, 10.0))
    assert ei.value.pair == (a, b)
    assert ei.value.section_id == "A"
    assert ei.value.kind == "NonMonotonicTiePoints"
    assert isinstance(ei.value, ChronologyError)


def test_equal_depth_or_equal_age_is_rejected() -> None:
    with pytest.raises(NonMonotonicTiePoints):
        check_tie_points([TiePoint("A", 1.0, 10.0), TiePoint("A", 1.0, 20.0)], depth_range=(0.0, 10.0))
    with pytest.raises(NonMonotonicTiePoints):
        check_tie_points([TiePoint("A", 1.0, 10.0), TiePoint("A", 2.0, 10.0)], depth_range=(0.0, 10.0))


def test_tie_point_outside_section_depths() -> None:
    tp = TiePoint("A", 20.0, 50.0)
    with pytest.raises(InvalidDepthRange) as ei:
        check_tie_points([TiePoint("A", 1.0, 10.0), tp], section_id="A", depth_range=(0.0, 10.0))
    assert ei.value.tie_point == tp
    assert ei.value.depth_range == (0.0, 10.0)

    with pytest.raises(InvalidDepthRange):
        check_tie_points([tp], section_id="A", depth_range=None)

    with pytest.raises(InvalidDepthRange):
        check_tie_points([TiePoint("A", float("nan"), 1.0)], depth_range=(0.0, 10.0))


def test_reversal_mask_flags_only_fallbacks() -> None:
    x = np.asarray([0.0, 1.0, 0.5, 2.0, np.nan, 3.0], dtype="float64")
    m = reversal_mask(x)
    assert m.tolist() == [False, False, True, False, False, False]
    assert not reversal_mask(np.asarray([1.0, 1.0, 2.0, 3.0])).any()
