# src/chronoframe/utils/config.py
from __future__ import annotations

from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover
    yaml = None  # type: ignore

from chronoframe.config.defaults import default_config
from chronoframe.config.schema import AgeModelConfig, AlignConfig, RunConfig, SpliceConfig, WorkflowConfig


def require_yaml() -> None:
    if yaml is None:
        raise RuntimeError("PyYAML is required for --config. Install with: pip install pyyaml")


def _find_repo_root(start: Path) -> Path:
    """
    Walk up from start looking for a pyproject.toml; falls back to start.
    """
    p = start.resolve()
    for _ in range(10):
        if (p / "pyproject.toml").exists():
            return p
        if p.parent == p:
            break
        p = p.parent
    return start.resolve()


def resolve_config_path(path: Path) -> Path:
    """
    Resolve config path:
      1) as given (absolute or relative to CWD)
      2) relative to the project root
    """
    p = Path(path)
    if p.exists():
        return p.resolve()

    p2 = (_find_repo_root(Path.cwd()) / p).resolve()
    if p2.exists():
        return p2

    return p  # caller raises with the original


def load_yaml(path: Path) -> Dict[str, Any]:
    require_yaml()
    p = resolve_config_path(Path(path))
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    obj = yaml.safe_load(p.read_text(encoding="utf-8"))
    return obj if isinstance(obj, dict) else {}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)  # type: ignore[arg-type]
        else:
            out[k] = v
    return out


def as_plain_dict(x: Any) -> Any:
    if is_dataclass(x):
        return {k: as_plain_dict(v) for k, v in x.__dict__.items()}
    if isinstance(x, dict):
        return {k: as_plain_dict(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [as_plain_dict(v) for v in x]
    return x


def _build(cls: Any, d: Dict[str, Any]) -> Any:
    kw: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in d:
            continue
        v = d[f.name]
        # YAML gives lists; the frozen configs hold tuples
        kw[f.name] = tuple(v) if isinstance(v, list) else v
    return cls(**kw)


def config_from_dict(d: Optional[Dict[str, Any]]) -> RunConfig:
    """
    Deep-merge `d` onto the defaults. Unknown keys (top level or per branch)
    are ignored.
    """
    merged = deep_merge(as_plain_dict(default_config()), d or {})
    return RunConfig(
        age_model=_build(AgeModelConfig, merged.get("age_model") or {}),
        align=_build(AlignConfig, merged.get("align") or {}),
        splice=_build(SpliceConfig, merged.get("splice") or {}),
        workflow=_build(WorkflowConfig, merged.get("workflow") or {}),
    )


def load_run_config(path: Optional[Path]) -> RunConfig:
    if path is None:
        return default_config()
    return config_from_dict(load_yaml(path))
