from __future__ import annotations

from pathlib import Path
from typing import Optional
import json
import logging

import typer
from rich import print
from rich.table import Table

from chronoframe.chronolog.io import (
    composite_to_frame,
    read_table_any,
    samples_to_frame,
    sections_from_frame,
    tie_points_from_frame,
)
from chronoframe.chronolog.shared import available_proxies
from chronoframe.errors import ChronologyError
from chronoframe.utils.config import as_plain_dict, load_run_config
from chronoframe.workflow import CorrelationWorkflow

app = typer.Typer(add_completion=False)


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def _load_session(samples: Path, ties: Optional[Path], config: Optional[Path]) -> CorrelationWorkflow:
    cfg = load_run_config(config)
    wf = CorrelationWorkflow(cfg=cfg)

    print("[bold]Loading samples...[/bold]")
    sections = sections_from_frame(read_table_any(samples))
    tps = tie_points_from_frame(read_table_any(ties)) if ties is not None else []
    print(f"Loaded sections: {len(sections)} | tie points: {len(tps)}")
    print(f"Proxies: {', '.join(available_proxies(sections)) or '-'}")

    for sec in sections:
        own = [t for t in tps if t.section_id == sec.id]
        try:
            wf.add_section(sec, own)
        except ChronologyError as e:
            print(f"[red]{sec.id}: {e.kind}[/red] {e}")
            wf.add_section(sec)
    return wf


@app.command()
def calibrate(
    samples: Path = typer.Option(..., exists=True, help="CSV/parquet: section_id,depth,<proxy>,..."),
    ties: Path = typer.Option(..., exists=True, help="CSV/parquet: section_id,depth,age"),
    out_dir: Path = typer.Option(Path("out")),
    config: Optional[Path] = typer.Option(None, help="YAML overrides of the default config"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Calibrate every section and splice the dated ones into a composite."""
    _setup_logging(verbose)
    wf = _load_session(samples, ties, config)
    out_dir.mkdir(parents=True, exist_ok=True)

    print("[bold]Calibrating...[/bold]")
    for sid in wf.section_ids:
        model = wf.model(sid)
        if model is None:
            print(f"  {sid}: [yellow]undated[/yellow] ({len(wf.tie_points(sid))} tie point(s))")
        else:
            lo, hi = wf.section(sid).age_range() or (float("nan"), float("nan"))
            print(f"  {sid}: {len(model.tie_points)} tie points, proxy={model.proxy_hint}, ages {lo:g}..{hi:g}")

    samples_path = out_dir / "calibrated_samples.csv"
    samples_to_frame(wf.section(sid) for sid in wf.section_ids).to_csv(samples_path, index=False)
    print("[green]Wrote[/green]", samples_path)

    print("[bold]Splicing...[/bold]")
    try:
        res = wf.composite()
    except ChronologyError as e:
        print(f"[red]{e.kind}[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Splice coverage")
    table.add_column("section")
    table.add_column("start", justify="right")
    table.add_column("end", justify="right")
    for iv in res.intervals:
        table.add_row(iv.section_id, f"{iv.start:g}", f"{iv.end:g}")
    print(table)
    if res.excluded:
        print(f"[yellow]Excluded (no ages):[/yellow] {', '.join(res.excluded)}")

    composite_path = out_dir / "composite.csv"
    composite_to_frame(res.samples).to_csv(composite_path, index=False)
    print("[green]Wrote[/green]", composite_path)

    manifest = {
        "samples": str(samples),
        "ties": str(ties),
        "n_sections": len(wf.section_ids),
        "n_composite": len(res.samples),
        "excluded": list(res.excluded),
        "versions": res.versions,
        "config": as_plain_dict(wf.cfg),
    }
    (out_dir / "manifest.json").write_text(json.dumps(manifest, indent=2))
    print("[green]Wrote[/green]", out_dir / "manifest.json")


@app.command()
def suggest(
    samples: Path = typer.Option(..., exists=True, help="CSV/parquet: section_id,depth,<proxy>,..."),
    reference: str = typer.Option(..., help="Reference section id"),
    target: str = typer.Option(..., help="Target section id"),
    proxy: Optional[str] = typer.Option(None, help="Proxy to align on (default: first of the priority list)"),
    ties: Optional[Path] = typer.Option(None, exists=True, help="CSV/parquet: section_id,depth,age"),
    config: Optional[Path] = typer.Option(None),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """List tie-point suggestions for a reference/target pair."""
    _setup_logging(verbose)
    wf = _load_session(samples, ties, config)
    try:
        cands = wf.suggest(reference, target, proxy)
    except ValueError as e:
        print(f"[red]{getattr(e, 'kind', 'error')}[/red] {e}")
        raise typer.Exit(code=1)

    if not cands:
        print("[yellow]No suggestions.[/yellow]")
        return

    table = Table(title=f"{reference} ~ {target}")
    table.add_column("#", justify="right")
    table.add_column("ref depth", justify="right")
    table.add_column("target depth", justify="right")
    table.add_column("confidence", justify="right")
    table.add_column("kind")
    for n, c in enumerate(cands, start=1):
        table.add_row(str(n), f"{c.ref_depth:g}", f"{c.target_depth:g}", f"{c.confidence:.1f}", c.kind)
    print(table)


if __name__ == "__main__":
    app()
