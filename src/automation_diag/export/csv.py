from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence

from ..util.serialization import stable_json_dumps


def row_columns(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    """
    Union of row keys in first-seen order.
    """
    columns: List[str] = []
    seen = set()
    for row in rows:
        for key in row.keys():
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return stable_json_dumps(value)


def write_csv(rows: Iterable[Mapping[str, Any]], path: Path) -> None:
    """
    Write rows to CSV in the given order. Nested values are JSON-encoded and
    missing values are written as empty cells.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    materialized = list(rows)
    columns = row_columns(materialized)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(columns)
        for row in materialized:
            writer.writerow([cell_text(row.get(col)) for col in columns])
