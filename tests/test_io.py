from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from chronoframe.agemodel.builder import AgeModelBuilder
from chronoframe.chronolog.io import (
    composite_to_frame,
    read_table_any,
    samples_to_frame,
    sections_from_frame,
    tie_points_from_frame,
)
from chronoframe.chronolog.model import CompositeSample, TiePoint


def _make_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "section_id": ["B", "B", "A", "A", "A"],
            "depth": [2.0, 1.0, 0.0, 5.0, np.nan],
            "delta18O": [3.1, 3.0, 1.0, "n/a", 1.2],
            "tex86": [np.nan, 0.4, 0.5, 0.6, 0.7],
        }
    )


def test_sections_from_frame() -> None:
    secs = sections_from_frame(_make_frame())
    assert [s.id for s in secs] == ["B", "A"]

    b, a = secs
    assert [s.depth for s in b.samples] == [1.0, 2.0]
    assert b.samples[1].value("tex86") is None
    assert a.samples[1].value("delta18O") is None
    assert a.samples[-1].depth is None
    assert a.depth_range() == (0.0, 5.0)
    assert set(a.proxies()) == {"delta18O", "tex86"}


def test_sections_from_frame_restricts_proxies() -> None:
    secs = sections_from_frame(_make_frame(), proxies=["tex86"])
    assert all(set(s.proxies()) == {"tex86"} for s in secs)


def test_tie_points_from_frame() -> None:
    df = pd.DataFrame({"Section_ID": ["A", "A"], "Depth": ["0", 5], "AGE": [0.0, 50.0]})
    assert tie_points_from_frame(df) == [TiePoint("A", 0.0, 0.0), TiePoint("A", 5.0, 50.0)]

    with pytest.raises(ValueError):
        tie_points_from_frame(pd.DataFrame({"section_id": ["A"], "depth": [None], "age": [1.0]}))
    with pytest.raises(ValueError):
        tie_points_from_frame(pd.DataFrame({"section_id": ["A"], "depth": [1.0]}))


def test_samples_to_frame_carries_ages() -> None:
    a = sections_from_frame(_make_frame())[1]
    cal, _ = AgeModelBuilder().calibrate(a, [TiePoint("A", 0.0, 0.0), TiePoint("A", 5.0, 50.0)])
    df = samples_to_frame([cal])
    assert list(df.columns[:4]) == ["section_id", "depth", "age", "extrapolated"]
    assert df["age"].iloc[0] == 0.0
    assert df["age"].iloc[1] == 50.0
    assert pd.isna(df["age"].iloc[2])
    assert not df["extrapolated"].any()


def test_composite_to_frame() -> None:
    df = composite_to_frame(
        [
            CompositeSample(age=1.0, source_section_id="A", values={"delta18O": 2.0}, depth=3.0),
            CompositeSample(age=2.0, source_section_id="B", values={"tex86": 0.1}, depth=1.0),
        ]
    )
    assert list(df.columns) == ["age", "source_section_id", "depth", "delta18O", "tex86"]
    assert df["source_section_id"].tolist() == ["A", "B"]


def test_read_table_any(tmp_path: Path) -> None:
    p = tmp_path / "samples.csv"
    _make_frame().to_csv(p, index=False)
    df = read_table_any(p)
    assert len(df) == 5
    assert [s.id for s in sections_from_frame(df)] == ["B", "A"]

    with pytest.raises(FileNotFoundError):
        read_table_any(tmp_path / "missing.csv")
