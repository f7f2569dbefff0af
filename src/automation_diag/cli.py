from __future__ import annotations

import logging
import shutil
import signal
import sys
import threading
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, List, Optional

from .auth.providers import AuthContext, AuthError, resolve_auth, validate_credential
from .automation.accounts import resolve_accounts
from .automation.clients import get_automation_client
from .automation.service import AzureAutomationService
from .collect.base import AccountResult, AutomationService
from .collect.orchestrator import STATUS_OK, collect_accounts
from .config import RunConfig, dump_config, load_run_config
from .export.sink import FileSink
from .logging import LogConfig, add_run_log_file, get_logger, remove_run_log_file, setup_logging
from .report import write_run_report_md
from .util.errors import AuthResolutionError, ConfigError, ExitCode, ExportError, as_exit_code
from .util.rich_progress import RunProgress, render_run_summary_table
from .util.serialization import stable_json_dumps
from .util.time import utc_now_iso

LOG = get_logger(__name__)

OUT_SCHEMA_VERSION = "1"


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    timer_key: Optional[str] = None,
    **extra: Any,
) -> None:
    key = timer_key or step
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(key)
        elif phase in {"complete", "error", "warning", "skipped"}:
            duration_ms = timers.finish(key)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


def _resolve_auth(cfg: RunConfig) -> AuthContext:
    if not cfg.subscription_id:
        raise ConfigError("Subscription id is required. Provide --subscription or set AZURE_SUBSCRIPTION_ID.")
    try:
        return resolve_auth(cfg.auth, cfg.subscription_id, cfg.tenant_id, cfg.client_id)
    except AuthError as e:
        raise AuthResolutionError(str(e)) from e


def _build_service(cfg: RunConfig) -> AutomationService:
    ctx = _resolve_auth(cfg)
    return AzureAutomationService(get_automation_client(ctx), resource_group=cfg.resource_group)


def _run_status(results: List[AccountResult]) -> str:
    if results and all(r.status == STATUS_OK for r in results):
        return "OK"
    return "INCOMPLETE"


def _write_run_summary(
    outdir: Path,
    *,
    cfg: RunConfig,
    status: str,
    results: List[AccountResult],
    started_at: str,
    finished_at: str,
    fatal_error: Optional[str],
) -> Path:
    accounts = [r.as_dict() for r in results]
    by_status: Dict[str, int] = {}
    for r in results:
        by_status[r.status] = by_status.get(r.status, 0) + 1
    summary = {
        "schema_version": OUT_SCHEMA_VERSION,
        "status": status,
        "started_at": started_at,
        "finished_at": finished_at,
        "fatal_error": fatal_error,
        "config": dump_config(cfg),
        "accounts": accounts,
        "counts_by_status": dict(sorted(by_status.items())),
    }
    path = outdir / "run_summary.json"
    path.write_text(stable_json_dumps(summary, indent=2) + "\n", encoding="utf-8")
    return path


def _zip_outdir(outdir: Path) -> Path:
    try:
        archive = shutil.make_archive(str(outdir), "zip", root_dir=str(outdir))
    except OSError as e:
        raise ExportError(f"Failed to archive {outdir}: {e}") from e
    return Path(archive)


class _Cancellation:
    """
    Single run-wide cancel signal, set by the timeout timer or by SIGINT.
    """

    def __init__(self, timeout: Optional[int]) -> None:
        self.event = threading.Event()
        self._timer: Optional[threading.Timer] = None
        self._previous_handler: Any = None
        self._timeout = timeout

    def _on_timeout(self) -> None:
        LOG.warning("Run timeout reached; no new work will be scheduled", extra={"timeout_s": self._timeout})
        self.event.set()

    def _on_sigint(self, _signum: int, _frame: Any) -> None:
        if self.event.is_set():
            raise KeyboardInterrupt
        LOG.warning("Interrupt received; finishing in-flight calls (press Ctrl-C again to abort)")
        self.event.set()

    def __enter__(self) -> _Cancellation:
        if self._timeout:
            self._timer = threading.Timer(self._timeout, self._on_timeout)
            self._timer.daemon = True
            self._timer.start()
        if threading.current_thread() is threading.main_thread():
            self._previous_handler = signal.signal(signal.SIGINT, self._on_sigint)
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._timer is not None:
            self._timer.cancel()
        if self._previous_handler is not None:
            signal.signal(signal.SIGINT, self._previous_handler)


def cmd_run(cfg: RunConfig) -> int:
    cfg.outdir.mkdir(parents=True, exist_ok=True)
    log_path = cfg.outdir / "run.log"
    add_run_log_file(log_path)
    started_at = utc_now_iso()
    timers = _StepTimers()

    status = "OK"
    fatal_error: Optional[str] = None
    results: List[AccountResult] = []
    filters = cfg.filters()

    _log_event(
        LOG,
        logging.INFO,
        "Starting diagnostic collection",
        step="run",
        phase="start",
        timers=timers,
        outdir=str(cfg.outdir),
    )
    if filters.include_all_stream_values and not filters.is_narrowed:
        LOG.warning(
            "Fetching every stream value without --runbooks or --job-ids makes one remote call per "
            "stream record for up to %d jobs per account",
            filters.job_window_size,
        )

    try:
        with _Cancellation(cfg.timeout) as cancellation:
            service = _build_service(cfg)

            _log_event(LOG, logging.INFO, "Account discovery started", step="accounts", phase="start", timers=timers)
            accounts = resolve_accounts(service, filters.account_names)
            _log_event(
                LOG,
                logging.INFO,
                "Accounts in scope",
                step="accounts",
                phase="complete",
                timers=timers,
                count=len(accounts),
                accounts=[a.namespace for a in accounts],
            )

            sink = FileSink(cfg.outdir, cfg.formats)
            _log_event(LOG, logging.INFO, "Collection started", step="collect", phase="start", timers=timers)
            with RunProgress(enabled=cfg.progress) as progress:
                progress.start_accounts(len(accounts))
                results = collect_accounts(
                    service,
                    sink,
                    accounts,
                    filters,
                    workers_account=cfg.workers_account,
                    workers_assets=cfg.workers_assets,
                    workers_jobs=cfg.workers_jobs,
                    cancel=cancellation.event,
                    on_account_done=lambda r: progress.advance_account(r.status),
                )
            status = _run_status(results)
            _log_event(
                LOG,
                logging.INFO if status == "OK" else logging.WARNING,
                "Collection complete",
                step="collect",
                phase="complete",
                timers=timers,
                status=status,
                accounts=len(results),
                files=len(sink.written),
            )
        _log_event(
            LOG,
            logging.INFO,
            "Run complete",
            step="run",
            phase="complete",
            timers=timers,
            status=status,
            outdir=str(cfg.outdir),
        )
        return int(ExitCode.OK) if status == "OK" else int(ExitCode.INCOMPLETE)
    except Exception as e:
        status = "FAILED"
        fatal_error = str(e)
        raise
    finally:
        # Always attempt to write a summary for transparency.
        finished_at = utc_now_iso()
        try:
            _write_run_summary(
                cfg.outdir,
                cfg=cfg,
                status=status,
                results=results,
                started_at=started_at,
                finished_at=finished_at,
                fatal_error=fatal_error,
            )
            write_run_report_md(
                outdir=cfg.outdir,
                status=status,
                config=dump_config(cfg),
                accounts=[r.as_dict() for r in results],
                started_at=started_at,
                finished_at=finished_at,
                fatal_error=fatal_error,
            )
        except OSError as e:
            LOG.error("Failed to write run summary", extra={"error": str(e)})
        render_run_summary_table(
            enabled=cfg.progress,
            status=status,
            accounts=[r.as_dict() for r in results],
            outdir=str(cfg.outdir),
        )
        remove_run_log_file(log_path)
        if cfg.zip and status != "FAILED":
            archive = _zip_outdir(cfg.outdir)
            LOG.info("Result archive written", extra={"path": str(archive)})


def cmd_validate_auth(cfg: RunConfig) -> int:
    ctx = _resolve_auth(cfg)
    try:
        validate_credential(ctx)
    except AuthError as e:
        raise AuthResolutionError(str(e)) from e
    service = AzureAutomationService(get_automation_client(ctx), resource_group=cfg.resource_group)
    accounts = service.list_accounts()
    LOG.info(
        "Authentication validated",
        extra={"method": ctx.method, "subscription": ctx.subscription_id, "accounts": len(accounts)},
    )
    print(f"OK: authentication validated; {len(accounts)} automation account(s) visible")
    return 0


def cmd_list_accounts(cfg: RunConfig) -> int:
    service = _build_service(cfg)
    for account in service.list_accounts():
        print(f"{account.resource_group},{account.name}")
    return 0


def main() -> None:
    try:
        command, cfg = load_run_config()
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "run":
            code = cmd_run(cfg)
        elif command == "validate-auth":
            code = cmd_validate_auth(cfg)
        elif command == "list-accounts":
            code = cmd_list_accounts(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        try:
            setup_logging(LogConfig())  # ensure something is configured
        except Exception:
            pass
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
