from __future__ import annotations

from threading import Event
from typing import List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..util.concurrency import check_cancelled
from ..util.time import EPOCH_UTC, as_utc
from .base import Account, AutomationService, CollectionFilters, JobSelection, JobSummary, Row

LOG = get_logger(__name__)

MODE_JOB_IDS = "job_ids"
MODE_RUNBOOK_NAMES = "runbook_names"
MODE_LAST_N = "last_n"


def _creation_key(job: JobSummary) -> Tuple[object, str]:
    return (as_utc(job.creation_time) or EPOCH_UTC, job.job_id)


def last_n_by_creation(jobs: Sequence[JobSummary], window: int) -> List[JobSummary]:
    """
    Keep the window most recently created jobs, newest first.
    Ties on creation time are broken by job id so the result is deterministic.
    """
    if window < 1:
        raise ValueError(f"window must be >= 1 (got {window})")
    ordered = sorted(jobs, key=_creation_key)
    tail = ordered[-window:]
    return list(reversed(tail))


def resolve_job_window(
    jobs: Sequence[JobSummary], filters: CollectionFilters
) -> Tuple[str, List[JobSummary], bool]:
    """
    Apply the filter precedence to a job listing: job ids, then runbook names,
    then the last-N window. Returns (mode, selected, truncated).
    """
    if filters.job_ids:
        selected = sorted((j for j in jobs if j.job_id in filters.job_ids), key=lambda j: j.job_id)
        return MODE_JOB_IDS, selected, False
    if filters.runbook_names:
        candidates = [j for j in jobs if j.runbook_name in filters.runbook_names]
        mode = MODE_RUNBOOK_NAMES
    else:
        candidates = list(jobs)
        mode = MODE_LAST_N
    selected = last_n_by_creation(candidates, filters.job_window_size)
    return mode, selected, len(selected) == filters.job_window_size


def _detail_status(detail: Row, fallback: Optional[str]) -> Optional[str]:
    status = detail.get("status") if isinstance(detail, dict) else None
    return str(status) if status else fallback


def select_jobs(
    service: AutomationService,
    account: Account,
    filters: CollectionFilters,
    *,
    cancel: Optional[Event] = None,
) -> JobSelection:
    """
    List the account's jobs, resolve the selection under the filter precedence
    and re-fetch each selected job's detail in presentation order.
    """
    listing = service.list_jobs(account)
    mode, selected, truncated = resolve_job_window(listing, filters)

    if mode == MODE_JOB_IDS:
        found = {j.job_id for j in selected}
        missing = sorted(filters.job_ids - found)
        if missing:
            LOG.info(
                "Requested job ids not present in account: %s",
                ", ".join(missing),
                extra={"account": account.namespace, "missing": missing},
            )

    summaries: List[JobSummary] = []
    details: List[Row] = []
    for job in selected:
        check_cancelled(cancel, f"fetching job {job.job_id}")
        detail = service.get_job(account, job.job_id)
        details.append(detail)
        summaries.append(
            JobSummary(
                job_id=job.job_id,
                runbook_name=job.runbook_name,
                creation_time=job.creation_time,
                status=_detail_status(detail, job.status),
            )
        )

    if truncated:
        LOG.info(
            "Job selection hit the window size (%d); older jobs may exist",
            filters.job_window_size,
            extra={"account": account.namespace, "mode": mode, "count": len(details)},
        )
    return JobSelection(summaries=summaries, jobs=details, mode=mode, truncated=truncated)
