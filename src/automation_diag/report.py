from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .util.time import utc_now_iso

MAX_ERRORS_PER_ACCOUNT = 20


def _truncate(s: str, max_len: int = 240) -> str:
    s = (s or "").strip()
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def _md_cell(value: str) -> str:
    # Escape pipes and keep multi-line values in one row.
    v = (value or "").replace("\n", "<br>").strip()
    return v.replace("|", "\\|")


def _md_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[str]:
    out: List[str] = []
    out.append("| " + " | ".join(_md_cell(str(h)) for h in headers) + " |")
    out.append("| " + " | ".join(["---"] * len(headers)) + " |")
    for r in rows:
        out.append("| " + " | ".join(_md_cell(str(c)) for c in r) + " |")
    return out


def render_run_report_md(
    *,
    status: str,
    config: Mapping[str, Any],
    accounts: Sequence[Mapping[str, Any]],
    started_at: str,
    finished_at: str,
    fatal_error: Optional[str] = None,
) -> str:
    lines: List[str] = ["# Azure Automation Diagnostics", ""]
    lines.append(f"- Status: **{status}**")
    lines.append(f"- Started: {started_at}")
    lines.append(f"- Finished: {finished_at}")
    if config.get("subscription_id"):
        lines.append(f"- Subscription: `{config['subscription_id']}`")
    scope = []
    for key, label in (("accounts", "Accounts"), ("runbooks", "Runbooks"), ("job_ids", "Job ids")):
        if config.get(key):
            scope.append(f"{label}: {', '.join(config[key])}")
    if not config.get("job_ids"):
        scope.append(f"Jobs per account: last {config.get('number_of_jobs')}")
    if config.get("all_stream_values"):
        scope.append("All stream values materialized")
    lines.append(f"- Scope: {'; '.join(scope)}")
    if fatal_error:
        lines += ["", "## Fatal error", "", f"`{_truncate(fatal_error)}`"]

    lines += ["", "## Accounts", ""]
    if not accounts:
        lines.append("No accounts were collected.")
    else:
        rows = []
        for acct in accounts:
            counts = acct.get("counts") or {}
            jobs = str(counts.get("jobs", 0))
            if acct.get("jobs_truncated"):
                jobs += " (window full)"
            rows.append(
                [
                    f"{acct.get('resource_group')}/{acct.get('account')}",
                    str(acct.get("status")),
                    str(counts.get("runbooks", 0)),
                    str(counts.get("runbook_exports", 0)),
                    jobs,
                    str(counts.get("job_streams", 0)),
                    str(len(acct.get("errors") or [])),
                ]
            )
        lines += _md_table(
            ["Account", "Status", "Runbooks", "Exports", "Jobs", "Stream records", "Errors"],
            rows,
        )

    failing = [a for a in accounts if a.get("errors")]
    if failing:
        lines += ["", "## Errors", ""]
        for acct in failing:
            lines.append(f"### {acct.get('resource_group')}/{acct.get('account')}")
            lines.append("")
            errors: List[Dict[str, Any]] = list(acct.get("errors") or [])
            rows = [
                [str(e.get("step") or ""), str(e.get("item") or ""), _truncate(str(e.get("error") or ""))]
                for e in errors[:MAX_ERRORS_PER_ACCOUNT]
            ]
            lines += _md_table(["Step", "Item", "Error"], rows)
            if len(errors) > MAX_ERRORS_PER_ACCOUNT:
                lines.append(f"\n_{len(errors) - MAX_ERRORS_PER_ACCOUNT} more errors in run_summary.json_")
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def write_run_report_md(
    *,
    outdir: Path,
    status: str,
    config: Mapping[str, Any],
    accounts: Sequence[Mapping[str, Any]],
    started_at: Optional[str] = None,
    finished_at: Optional[str] = None,
    fatal_error: Optional[str] = None,
) -> Path:
    outdir.mkdir(parents=True, exist_ok=True)
    text = render_run_report_md(
        status=status,
        config=config,
        accounts=accounts,
        started_at=started_at or utc_now_iso(),
        finished_at=finished_at or utc_now_iso(),
        fatal_error=fatal_error,
    )
    p = outdir / "report.md"
    p.write_text(text, encoding="utf-8")
    return p
