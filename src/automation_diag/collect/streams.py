from __future__ import annotations

from dataclasses import dataclass, field
from threading import Event
from typing import Any, Dict, List, Optional, Tuple

from ..logging import get_logger
from ..util.concurrency import check_cancelled
from .base import ERROR_STREAM_TYPE, Account, AutomationService, JobStreamRow, JobSummary, StreamSummary

LOG = get_logger(__name__)


@dataclass(frozen=True)
class StreamResult:
    job_id: str
    rows: List[JobStreamRow] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)


def should_materialize(stream_type: str, include_all_values: bool) -> bool:
    if include_all_values:
        return True
    return (stream_type or "").strip().lower() == ERROR_STREAM_TYPE


def record_sort_key(record_id: str) -> Tuple[int, int, str]:
    """
    Order stream record ids ascending: purely numeric ids compare as numbers,
    anything else compares as text after them.
    """
    text = str(record_id or "")
    if text.isdigit():
        return (0, int(text), text)
    return (1, 0, text)


def materialize_streams(
    service: AutomationService,
    account: Account,
    job: JobSummary,
    include_all_values: bool,
    *,
    cancel: Optional[Event] = None,
) -> StreamResult:
    """
    Fetch a job's output records in ascending record-id order and attach the
    full value to records that qualify (Error records, or every record when
    include_all_values is set).

    Value fetches are isolated per record: a failed fetch is logged and
    recorded, the record keeps an empty value and the rest continue.
    """
    records: List[StreamSummary] = sorted(
        service.list_job_streams(account, job.job_id),
        key=lambda r: record_sort_key(r.record_id),
    )
    result = StreamResult(job_id=job.job_id)
    for record in records:
        value: Any = None
        if should_materialize(record.stream_type, include_all_values):
            check_cancelled(cancel, f"fetching stream value {record.record_id}")
            try:
                value = service.get_stream_value(account, job.job_id, record.record_id)
            except Exception as e:
                LOG.warning(
                    "Stream value fetch failed for job %s record %s",
                    job.job_id,
                    record.record_id,
                    extra={
                        "account": account.namespace,
                        "job_id": job.job_id,
                        "record_id": record.record_id,
                        "error": str(e),
                    },
                )
                result.errors.append(
                    {"step": "stream_value", "item": f"{job.job_id}:{record.record_id}", "error": str(e)}
                )
                value = None
        result.rows.append(
            JobStreamRow(
                job_id=job.job_id,
                runbook_name=job.runbook_name,
                job_status=job.status,
                record_id=record.record_id,
                time=record.time,
                stream_type=record.stream_type,
                summary=record.summary,
                value=value,
            )
        )
    return result
