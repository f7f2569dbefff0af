from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Iterable, List, Mapping

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .csv import cell_text, row_columns

MIN_WIDTH = 80
MAX_CELL_WIDTH = 120


def render_table(rows: Iterable[Mapping[str, Any]], *, title: str | None = None) -> str:
    """
    Render rows as a plain fixed-width table. Cell text is never parsed as
    markup; long cells wrap at MAX_CELL_WIDTH.
    """
    materialized = list(rows)
    columns = row_columns(materialized)
    cells: List[List[str]] = [[cell_text(row.get(col)) for col in columns] for row in materialized]

    widths = [len(col) for col in columns]
    for line in cells:
        for i, text in enumerate(line):
            longest = max((len(part) for part in text.splitlines()), default=0)
            widths[i] = min(MAX_CELL_WIDTH, max(widths[i], longest))

    table = Table(title=title, box=box.SIMPLE_HEAD, show_header=True, show_edge=False, pad_edge=False)
    for col, width in zip(columns, widths):
        table.add_column(Text(col), min_width=width, max_width=MAX_CELL_WIDTH, overflow="fold", no_wrap=False)
    for line in cells:
        table.add_row(*[Text(text) for text in line])

    console = Console(
        width=max(MIN_WIDTH, sum(widths) + 3 * len(widths) + 4),
        record=True,
        no_color=True,
        color_system=None,
        force_terminal=False,
        highlight=False,
        emoji=False,
        markup=False,
        soft_wrap=False,
        file=io.StringIO(),
    )
    console.print(table)
    return console.export_text(styles=False)


def write_text(rows: Iterable[Mapping[str, Any]], path: Path, *, title: str | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_table(rows, title=title), encoding="utf-8")
