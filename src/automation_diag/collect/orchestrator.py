from __future__ import annotations

from threading import Event
from time import perf_counter
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..util.concurrency import parallel_map_ordered
from ..util.errors import CollectionCancelled
from .assets import collect_assets
from .base import Account, AccountResult, AssetKind, AutomationService, CollectionFilters, JobSummary, Row, Sink
from .jobs import select_jobs
from .runbooks import export_runbooks, select_runbooks
from .streams import StreamResult, materialize_streams

LOG = get_logger(__name__)

STATUS_OK = "OK"
STATUS_PARTIAL = "PARTIAL"
STATUS_ERROR = "ERROR"
STATUS_CANCELLED = "CANCELLED"

ARTIFACT_RUNBOOKS = "runbooks"
ARTIFACT_JOBS = "jobs"
ARTIFACT_JOB_STREAMS = "job_streams"

ASSET_KINDS: Tuple[AssetKind, ...] = tuple(AssetKind)


class _AccountRun:
    """Mutable bookkeeping for one account; frozen into an AccountResult at the end."""

    def __init__(self, account: Account, sink: Sink) -> None:
        self.account = account
        self.sink = sink
        self.counts: Dict[str, int] = {}
        self.empty: List[str] = []
        self.errors: List[Dict[str, str]] = []
        self.truncated = False

    def emit(self, artifact: str, rows: List[Row]) -> None:
        self.counts[artifact] = len(rows)
        if not rows:
            self.empty.append(artifact)
            LOG.info("No %s found", artifact, extra={"account": self.account.namespace, "artifact": artifact})
            return
        self.sink.emit(self.account, artifact, rows)

    def result(self, status: str) -> AccountResult:
        return AccountResult(
            account=self.account,
            status=status,
            counts=dict(self.counts),
            empty=tuple(self.empty),
            errors=tuple(self.errors),
            truncated=self.truncated,
        )


def _collect_asset_kinds(
    service: AutomationService,
    run: _AccountRun,
    workers: int,
    cancel: Optional[Event],
) -> None:
    account = run.account

    def _one(kind: AssetKind) -> Tuple[AssetKind, Optional[List[Row]], Optional[str]]:
        try:
            return kind, collect_assets(service, account, kind), None
        except Exception as e:
            return kind, None, str(e)

    for kind, rows, error in parallel_map_ordered(_one, ASSET_KINDS, max_workers=workers, cancel=cancel):
        if error is not None:
            LOG.warning(
                "Asset collection failed for %s",
                kind.value,
                extra={"account": account.namespace, "step": "assets", "phase": "error", "kind": kind.value, "error": error},
            )
            run.errors.append({"step": "assets", "item": kind.value, "error": error})
            continue
        run.emit(kind.value, rows or [])


def _collect_streams(
    service: AutomationService,
    run: _AccountRun,
    jobs: Sequence[JobSummary],
    filters: CollectionFilters,
    workers: int,
    cancel: Optional[Event],
) -> None:
    account = run.account

    def _one(job: JobSummary) -> StreamResult:
        try:
            return materialize_streams(service, account, job, filters.include_all_stream_values, cancel=cancel)
        except CollectionCancelled:
            raise
        except Exception as e:
            LOG.warning(
                "Listing job streams failed for job %s",
                job.job_id,
                extra={"account": account.namespace, "step": "streams", "phase": "error", "job_id": job.job_id, "error": str(e)},
            )
            return StreamResult(job_id=job.job_id, errors=[{"step": "streams", "item": job.job_id, "error": str(e)}])

    rows: List[Row] = []
    for res in parallel_map_ordered(_one, jobs, max_workers=workers, cancel=cancel):
        rows.extend(r.as_row() for r in res.rows)
        run.errors.extend(res.errors)
    run.emit(ARTIFACT_JOB_STREAMS, rows)


def collect_account(
    service: AutomationService,
    sink: Sink,
    account: Account,
    filters: CollectionFilters,
    *,
    workers_assets: int = 1,
    workers_jobs: int = 1,
    cancel: Optional[Event] = None,
) -> AccountResult:
    """
    Collect one account: assets, runbooks (+ export), jobs and job streams,
    emitting every table to the sink. Never raises; failures are reported in
    the returned AccountResult.
    """
    run = _AccountRun(account, sink)
    if cancel is not None and cancel.is_set():
        return run.result(STATUS_CANCELLED)

    started = perf_counter()
    LOG.info("Account collection started", extra={"account": account.namespace, "step": "account", "phase": "start"})
    try:
        _collect_asset_kinds(service, run, workers_assets, cancel)

        runbooks = select_runbooks(service, account, filters.runbook_names)
        run.emit(ARTIFACT_RUNBOOKS, runbooks)
        outcome = export_runbooks(service, account, runbooks, sink.artifact_dir(account, ARTIFACT_RUNBOOKS), cancel=cancel)
        run.counts["runbook_exports"] = len(outcome.exported)
        run.errors.extend(outcome.errors)

        selection = select_jobs(service, account, filters, cancel=cancel)
        run.truncated = selection.truncated
        run.emit(ARTIFACT_JOBS, selection.jobs)

        _collect_streams(service, run, selection.summaries, filters, workers_jobs, cancel)
    except CollectionCancelled as e:
        LOG.warning(
            "Account collection cancelled",
            extra={"account": account.namespace, "step": "account", "phase": "cancelled", "error": str(e)},
        )
        run.errors.append({"step": "account", "item": account.namespace, "error": str(e) or "cancelled"})
        return run.result(STATUS_CANCELLED)
    except Exception as e:
        LOG.error(
            "Account collection failed",
            extra={"account": account.namespace, "step": "account", "phase": "error", "error": str(e)},
        )
        run.errors.append({"step": "account", "item": account.namespace, "error": str(e)})
        return run.result(STATUS_ERROR)

    status = STATUS_PARTIAL if run.errors else STATUS_OK
    LOG.info(
        "Account collection complete",
        extra={
            "account": account.namespace,
            "step": "account",
            "phase": "complete",
            "status": status,
            "duration_ms": int((perf_counter() - started) * 1000),
        },
    )
    return run.result(status)


def collect_accounts(
    service: AutomationService,
    sink: Sink,
    accounts: Sequence[Account],
    filters: CollectionFilters,
    *,
    workers_account: int = 1,
    workers_assets: int = 1,
    workers_jobs: int = 1,
    cancel: Optional[Event] = None,
    on_account_done: Optional[Callable[[AccountResult], None]] = None,
) -> List[AccountResult]:
    """
    Collect every account, each in isolation. Results are returned in account
    order (name, then resource group) regardless of completion order.
    """
    ordered = sorted(accounts, key=lambda a: a.sort_key())

    def _one(account: Account) -> AccountResult:
        result = collect_account(
            service,
            sink,
            account,
            filters,
            workers_assets=workers_assets,
            workers_jobs=workers_jobs,
            cancel=cancel,
        )
        if on_account_done is not None:
            on_account_done(result)
        return result

    # No cancel here: unscheduled accounts still report CANCELLED from collect_account.
    return parallel_map_ordered(_one, ordered, max_workers=workers_account)
