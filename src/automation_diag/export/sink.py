from __future__ import annotations

import hashlib
import re
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

from ..collect.base import Account, Row
from ..util.errors import ExportError
from ..util.serialization import sanitize_for_json
from .csv import write_csv
from .json import write_json
from .text import write_text

SUPPORTED_FORMATS = ("txt", "csv", "json")

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

Writer = Callable[[List[Mapping[str, Any]], Path], None]


def _write_txt(rows: List[Mapping[str, Any]], path: Path) -> None:
    write_text(rows, path, title=path.stem)


_WRITERS: Dict[str, Writer] = {
    "txt": _write_txt,
    "csv": write_csv,
    "json": write_json,
}


def safe_path_part(value: str) -> str:
    cleaned = _UNSAFE_PATH_CHARS.sub("_", (value or "").strip())
    return cleaned.strip("._") or "_"


def account_path_part(value: str) -> str:
    """
    Directory name for a resource group or account. Names that had to be
    sanitized get a short digest of the raw name so distinct names never share
    a directory.
    """
    safe = safe_path_part(value)
    if safe == value:
        return safe
    digest = hashlib.sha256((value or "").encode("utf-8")).hexdigest()[:8]
    return f"{safe}-{digest}"


class FileSink:
    """
    Writes each emitted table under <root>/<resource_group>/<account>/ in every
    configured format. Writes to the same artifact are serialized.
    """

    def __init__(self, root: Path, formats: Sequence[str] = SUPPORTED_FORMATS) -> None:
        unknown = sorted(set(formats) - set(SUPPORTED_FORMATS))
        if unknown:
            raise ValueError(f"Unsupported output formats: {', '.join(unknown)}")
        self.root = Path(root)
        self.formats = tuple(f for f in SUPPORTED_FORMATS if f in formats)
        self._locks: Dict[Path, Lock] = {}
        self._locks_guard = Lock()
        self._written: List[Path] = []

    def account_dir(self, account: Account) -> Path:
        return self.root / account_path_part(account.resource_group) / account_path_part(account.name)

    def artifact_dir(self, account: Account, name: str) -> Path:
        path = self.account_dir(account) / safe_path_part(name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _lock_for(self, base: Path) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(base)
            if lock is None:
                lock = Lock()
                self._locks[base] = lock
            return lock

    def emit(self, account: Account, artifact: str, rows: Iterable[Row]) -> List[Path]:
        sanitized = [sanitize_for_json(dict(row)) for row in rows]
        base = self.account_dir(account) / safe_path_part(artifact)
        paths: List[Path] = []
        with self._lock_for(base):
            for fmt in self.formats:
                path = base.with_name(f"{base.name}.{fmt}")
                try:
                    _WRITERS[fmt](sanitized, path)
                except OSError as e:
                    raise ExportError(f"Failed to write {path}: {e}") from e
                paths.append(path)
        with self._locks_guard:
            self._written.extend(paths)
        return paths

    @property
    def written(self) -> List[Path]:
        with self._locks_guard:
            return sorted(self._written)
