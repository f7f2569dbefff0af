from __future__ import annotations

from pathlib import Path

from automation_diag.config import RunConfig, dump_config
from automation_diag.report import MAX_ERRORS_PER_ACCOUNT, render_run_report_md, write_run_report_md


def _account(**overrides):
    acct = {
        "resource_group": "rg",
        "account": "A",
        "status": "OK",
        "counts": {"runbooks": 2, "runbook_exports": 2, "jobs": 20, "job_streams": 7},
        "empty": ["certificates"],
        "errors": [],
        "jobs_truncated": True,
    }
    acct.update(overrides)
    return acct


def test_render_run_report_lists_accounts_and_scope(tmp_path: Path) -> None:
    cfg = RunConfig(outdir=tmp_path, subscription_id="sub-1", runbooks=["R1", "R2"], number_of_jobs=20)

    text = render_run_report_md(
        status="OK",
        config=dump_config(cfg),
        accounts=[_account()],
        started_at="2026-01-01T00:00:00+00:00",
        finished_at="2026-01-01T00:01:00+00:00",
    )

    assert text.startswith("# Azure Automation Diagnostics")
    assert "- Status: **OK**" in text
    assert "`sub-1`" in text
    assert "Runbooks: R1, R2; Jobs per account: last 20" in text
    assert "| Account | Status | Runbooks | Exports | Jobs | Stream records | Errors |" in text
    assert "| rg/A | OK | 2 | 2 | 20 (window full) | 7 | 0 |" in text
    assert "## Errors" not in text


def test_render_run_report_job_ids_replace_window(tmp_path: Path) -> None:
    cfg = RunConfig(outdir=tmp_path, job_ids=["j-1"])

    text = render_run_report_md(
        status="OK",
        config=dump_config(cfg),
        accounts=[],
        started_at="s",
        finished_at="f",
    )

    assert "Job ids: j-1" in text
    assert "Jobs per account" not in text
    assert "No accounts were collected." in text


def test_render_run_report_escapes_and_caps_errors(tmp_path: Path) -> None:
    errors = [{"step": "stream_value", "item": f"j:{i}", "error": "bad | value\nline2"} for i in range(25)]
    text = render_run_report_md(
        status="INCOMPLETE",
        config=dump_config(RunConfig(outdir=tmp_path)),
        accounts=[_account(status="PARTIAL", errors=errors)],
        started_at="s",
        finished_at="f",
        fatal_error=None,
    )

    assert "### rg/A" in text
    assert "bad \\| value<br>line2" in text
    assert "| stream_value | j:19 |" in text
    assert "| stream_value | j:20 |" not in text
    assert f"{25 - MAX_ERRORS_PER_ACCOUNT} more errors in run_summary.json" in text


def test_write_run_report_md_includes_fatal_error(tmp_path: Path) -> None:
    path = write_run_report_md(
        outdir=tmp_path,
        status="FAILED",
        config=dump_config(RunConfig(outdir=tmp_path)),
        accounts=[],
        fatal_error="No automation accounts matched: missing",
    )

    assert path == tmp_path / "report.md"
    text = path.read_text(encoding="utf-8")
    assert "## Fatal error" in text
    assert "No automation accounts matched: missing" in text
