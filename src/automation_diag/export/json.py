from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping

from ..util.serialization import stable_json_dumps


def write_json(rows: Iterable[Mapping[str, Any]], path: Path) -> None:
    """
    Write rows as a JSON array, preserving row order and sorting keys within
    each object.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [dict(row) for row in rows]
    path.write_text(stable_json_dumps(payload, indent=2) + "\n", encoding="utf-8")
