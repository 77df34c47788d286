# src/chronoframe/chronolog/io.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .model import CompositeSample, Section, TiePoint
from .shared import RESERVED_KEYS


def read_parquet_any(path: Path) -> pd.DataFrame:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)

    if p.is_dir():
        import pyarrow.dataset as ds  # type: ignore

        return ds.dataset(str(p), format="parquet").to_table().to_pandas()

    return pd.read_parquet(p)


def read_table_any(path: Path) -> pd.DataFrame:
    """CSV file, parquet file or a directory of parquet parts."""
    p = Path(path)
    if p.is_dir() or p.suffix.lower() in (".parquet", ".pq"):
        return read_parquet_any(p)
    if not p.exists():
        raise FileNotFoundError(p)
    return pd.read_csv(p)


def _cols(df: pd.DataFrame) -> Dict[str, str]:
    return {str(c).lower(): str(c) for c in df.columns}


def _require(df: pd.DataFrame, name: str, what: str) -> str:
    c = _cols(df).get(name.lower())
    if c is None:
        raise ValueError(f"{what} missing {name!r} column. Found: {list(df.columns)}")
    return c


def _num(x: object) -> Optional[float]:
    if x is None:
        return None
    try:
        v = float(x)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return v if np.isfinite(v) else None


def sections_from_frame(
    df: pd.DataFrame,
    *,
    section_col: str = "section_id",
    depth_col: str = "depth",
    proxies: Optional[Sequence[str]] = None,
) -> List[Section]:
    """
    Long table (one row per sample) -> Sections, in first-appearance order.

    Every non-reserved column is a proxy unless `proxies` narrows the set.
    Non-numeric and NaN cells become missing measurements; an empty depth
    cell gives a depthless sample. Any age column is ignored.
    """
    sid_c = _require(df, section_col, "Sample table")
    z_c = _cols(df).get(depth_col.lower())
    reserved = {k.lower() for k in RESERVED_KEYS} | {section_col.lower(), depth_col.lower()}
    if proxies is None:
        pcols = [str(c) for c in df.columns if str(c).lower() not in reserved]
    else:
        pcols = [str(c) for c in proxies if str(c) in df.columns]

    out: List[Section] = []
    for sid, g in df.groupby(sid_c, sort=False):
        rows: List[Dict[str, Optional[float]]] = []
        for rec in g.to_dict(orient="records"):
            r: Dict[str, Optional[float]] = {p: _num(rec.get(p)) for p in pcols}
            r["depth"] = _num(rec.get(z_c)) if z_c is not None else None
            rows.append(r)
        out.append(Section.from_rows(str(sid), rows))
    return out


def tie_points_from_frame(
    df: pd.DataFrame,
    *,
    section_col: str = "section_id",
    depth_col: str = "depth",
    age_col: str = "age",
) -> List[TiePoint]:
    sid_c = _require(df, section_col, "Tie-point table")
    z_c = _require(df, depth_col, "Tie-point table")
    a_c = _require(df, age_col, "Tie-point table")
    d = df[[sid_c, z_c, a_c]].copy()
    d[z_c] = pd.to_numeric(d[z_c], errors="coerce")
    d[a_c] = pd.to_numeric(d[a_c], errors="coerce")
    bad = d[z_c].isna() | d[a_c].isna()
    if bool(bad.any()):
        raise ValueError(f"Tie-point table has {int(bad.sum())} row(s) without numeric depth/age.")
    return [TiePoint(str(s), float(z), float(a)) for s, z, a in d.itertuples(index=False, name=None)]


def samples_to_frame(sections: Iterable[Section]) -> pd.DataFrame:
    """Calibrated sections -> long table with age and extrapolated flag per sample."""
    rows: List[Dict[str, object]] = []
    for sec in sections:
        for s in sec.samples:
            r: Dict[str, object] = {
                "section_id": sec.id,
                "depth": s.depth,
                "age": s.age,
                "extrapolated": bool(s.extrapolated),
            }
            r.update(dict(s.values))
            rows.append(r)
    return pd.DataFrame(rows, columns=_ordered_columns(rows, ["section_id", "depth", "age", "extrapolated"]))


def composite_to_frame(samples: Sequence[CompositeSample]) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []
    for c in samples:
        r: Dict[str, object] = {"age": c.age, "source_section_id": c.source_section_id, "depth": c.depth}
        r.update(dict(c.values))
        rows.append(r)
    return pd.DataFrame(rows, columns=_ordered_columns(rows, ["age", "source_section_id", "depth"]))


def _ordered_columns(rows: Sequence[Dict[str, object]], head: List[str]) -> List[str]:
    cols = list(head)
    for r in rows:
        for k in r:
            if k not in cols:
                cols.append(k)
    return cols

