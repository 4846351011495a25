"""Read offline row fixtures and request files; write reports and JSON."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd
import yaml

from adpilot.query_adapter import LEVELS


class InputFileError(ValueError):
    """Raised when an input file is missing or has the wrong layout."""


def _read_rows_csv(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    df = pd.read_csv(path, dtype=str, keep_default_na=True)
    if "level" not in df.columns or "campaign_id" not in df.columns:
        raise InputFileError(
            f"{path}: CSV rows need 'level' and 'campaign_id' columns "
            "(plus any MetricRow field such as impressions, clicks, cost_micros)."
        )
    df = df.astype(object).where(pd.notna(df), None)
    out: Dict[str, List[Dict[str, Any]]] = {}
    for level, group in df.groupby("level", sort=False):
        records = group.drop(columns=["level"]).to_dict(orient="records")
        out[str(level).strip().lower()] = records
    return out


def read_rows_file(path: str | Path) -> Dict[str, List[Any]]:
    """Load ``{level: [records]}`` from YAML/JSON, or a flat CSV with a level column."""
    p = Path(path)
    if not p.exists():
        raise InputFileError(f"Input file not found: {p}")

    if p.suffix.lower() == ".csv":
        data = _read_rows_csv(p)
    else:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise InputFileError(f"{p}: expected a mapping of level → list of rows")

    unknown = sorted(set(data) - set(LEVELS))
    if unknown:
        raise InputFileError(
            f"{p}: unknown level(s) {', '.join(unknown)}; expected {', '.join(LEVELS)}"
        )
    for level, records in data.items():
        if not isinstance(records, list):
            raise InputFileError(f"{p}: rows for '{level}' must be a list")
    return data


def read_request_file(path: str | Path) -> Dict[str, Any]:
    """Load a request body (JSON is valid YAML)."""
    p = Path(path)
    if not p.exists():
        raise InputFileError(f"Request file not found: {p}")
    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise InputFileError(f"{p}: request body must be a mapping")
    return data


def write_text(text: str, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def write_json(payload: Any, path: str | Path) -> Path:
    return write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", path)
