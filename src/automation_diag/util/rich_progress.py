from __future__ import annotations

from threading import Lock
from typing import Any, Dict, Mapping, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table


def _status_text(counts: Mapping[str, int]) -> str:
    return ", ".join(f"{status}={n}" for status, n in sorted(counts.items()))


class RunProgress:
    """
    One bar advancing per finished account, annotated with the running count
    of account statuses. Does nothing when disabled.
    """

    def __init__(self, *, enabled: bool, console: Optional[Console] = None) -> None:
        self._lock = Lock()
        self._counts: Dict[str, int] = {}
        self._task: Optional[TaskID] = None
        self._progress: Optional[Progress] = None
        if enabled:
            self._progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("{task.fields[statuses]}"),
                TimeElapsedColumn(),
                console=console or Console(stderr=True),
                transient=True,
            )

    @property
    def enabled(self) -> bool:
        return self._progress is not None

    def __enter__(self) -> RunProgress:
        if self._progress is not None:
            self._progress.start()
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._progress is not None:
            self._progress.stop()

    def start_accounts(self, total: int) -> None:
        if self._progress is None:
            return
        self._counts = {}
        self._task = self._progress.add_task("Accounts", total=total, statuses="")

    def advance_account(self, status: str) -> None:
        """Called from account worker threads."""
        if self._progress is None or self._task is None:
            return
        with self._lock:
            self._counts[status] = self._counts.get(status, 0) + 1
            self._progress.update(self._task, advance=1, statuses=_status_text(self._counts))


def render_run_summary_table(
    *,
    enabled: bool,
    status: str,
    accounts: Sequence[Mapping[str, Any]],
    outdir: str,
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Run Summary", caption=f"Status: {status}  Output: {outdir}", header_style="bold")
    for name, justify in (
        ("Account", "left"),
        ("Status", "left"),
        ("Runbooks", "right"),
        ("Jobs", "right"),
        ("Stream records", "right"),
        ("Errors", "right"),
    ):
        table.add_column(name, justify=justify, style="cyan" if name == "Account" else None)
    for acct in accounts:
        counts = acct.get("counts") or {}
        jobs = str(counts.get("jobs", 0))
        if acct.get("jobs_truncated"):
            jobs += " (window full)"
        table.add_row(
            f"{acct.get('resource_group')}/{acct.get('account')}",
            str(acct.get("status")),
            str(counts.get("runbooks", 0)),
            jobs,
            str(counts.get("job_streams", 0)),
            str(len(acct.get("errors") or [])),
        )
    (console or Console(stderr=True)).print(table)
