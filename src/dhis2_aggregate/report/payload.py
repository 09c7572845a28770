from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

import pandas as pd
from pydantic import ValidationError

from dhis2_aggregate.sources.models import ExportResult


_LEADING_COLUMNS = ["dataSet", "period", "orgUnit", "dataElement", "value"]


@dataclass(frozen=True)
class PayloadWriteResult:
    path: Path
    fmt: str
    data_values: int


def default_export_path(exports_dir: Path, result: ExportResult, fmt: str = "json") -> Path:
    """exports/<dataSet>-<period>.<fmt> (dataSet made filesystem-safe)."""

    safe_data_set = re.sub(r"[^A-Za-z0-9_.-]+", "_", result.data_set).strip("_") or "dataset"
    return exports_dir / f"{safe_data_set}-{result.period}.{fmt}"


def data_values_frame(result: ExportResult) -> pd.DataFrame:
    """One row per data value; dataSet/period repeated, extra attributes after the fixed columns."""

    payload = result.to_payload()
    rows = [
        {"dataSet": payload["dataSet"], "period": payload["period"], **dv}
        for dv in payload.get("dataValues", [])
    ]
    df = pd.DataFrame(rows, columns=None if rows else _LEADING_COLUMNS)
    extra = sorted(c for c in df.columns if c not in _LEADING_COLUMNS)
    return df[_LEADING_COLUMNS + extra]


def write_export(result: ExportResult, path: Path, fmt: str = "json") -> PayloadWriteResult:
    path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "json":
        text = json.dumps(result.to_payload(), ensure_ascii=False, indent=2)
        path.write_text(text + "\n", encoding="utf-8")
    elif fmt == "csv":
        data_values_frame(result).to_csv(path, index=False)
    else:
        raise ValueError(f"unsupported export format: {fmt}")

    return PayloadWriteResult(path=path, fmt=fmt, data_values=len(result.data_values))


def load_export(path: Path) -> ExportResult:
    """Read a JSON dataValueSet written by write_export."""

    if not path.exists():
        raise FileNotFoundError(str(path))

    raw = path.read_text(encoding="utf-8")
    parsed = json.loads(raw) if raw.strip() else {}
    if not isinstance(parsed, dict):
        raise ValueError("export payload must be a JSON object at the top level")

    try:
        return ExportResult.model_validate(parsed)
    except ValidationError as exc:
        raise ValueError(f"Invalid export payload: {exc}") from exc
