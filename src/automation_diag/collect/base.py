from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

DEFAULT_JOB_WINDOW_SIZE = 20
ERROR_STREAM_TYPE = "error"

Row = Dict[str, Any]


@dataclass(frozen=True)
class Account:
    """
    Scoping key for every collector: an automation account within a resource group.
    """

    resource_group: str
    name: str
    location: Optional[str] = None
    account_id: Optional[str] = None

    @property
    def namespace(self) -> str:
        return f"{self.resource_group}/{self.name}"

    def sort_key(self) -> Tuple[str, str]:
        return (self.name, self.resource_group)


class AssetKind(str, Enum):
    MODULES = "modules"
    VARIABLES = "variables"
    CREDENTIALS = "credentials"
    CERTIFICATES = "certificates"
    CONNECTIONS = "connections"
    SCHEDULES = "schedules"
    SCHEDULED_RUNBOOKS = "scheduled_runbooks"

    @property
    def key_field(self) -> str:
        if self is AssetKind.SCHEDULED_RUNBOOKS:
            return "job_schedule_id"
        return "name"


class RunbookSlot(str, Enum):
    PUBLISHED = "Published"
    DRAFT = "Draft"


@dataclass(frozen=True)
class CollectionFilters:
    account_names: FrozenSet[str] = frozenset()
    runbook_names: FrozenSet[str] = frozenset()
    job_ids: FrozenSet[str] = frozenset()
    include_all_stream_values: bool = False
    job_window_size: int = DEFAULT_JOB_WINDOW_SIZE

    def __post_init__(self) -> None:
        if isinstance(self.job_window_size, bool) or not isinstance(self.job_window_size, int):
            raise ValueError("job_window_size must be an integer")
        if self.job_window_size < 1:
            raise ValueError(f"job_window_size must be >= 1 (got {self.job_window_size})")
        for attr in ("account_names", "runbook_names", "job_ids"):
            value = getattr(self, attr)
            if not isinstance(value, frozenset):
                object.__setattr__(self, attr, frozenset(str(v) for v in value if str(v)))

    @property
    def is_narrowed(self) -> bool:
        return bool(self.runbook_names or self.job_ids)


@dataclass(frozen=True)
class JobSummary:
    job_id: str
    runbook_name: str
    creation_time: Optional[datetime]
    status: Optional[str] = None


@dataclass(frozen=True)
class StreamSummary:
    record_id: str
    time: Optional[datetime]
    stream_type: str
    summary: Optional[str] = None


@dataclass(frozen=True)
class JobStreamRow:
    """
    One stream record of a job, denormalized with the owning job's identity for
    flat tabular export.
    """

    job_id: str
    runbook_name: str
    job_status: Optional[str]
    record_id: str
    time: Optional[datetime]
    stream_type: str
    summary: Optional[str]
    value: Any = None

    def as_row(self) -> Row:
        return {
            "job_id": self.job_id,
            "runbook_name": self.runbook_name,
            "job_status": self.job_status,
            "stream_record_id": self.record_id,
            "time": self.time.isoformat() if isinstance(self.time, datetime) else self.time,
            "stream_type": self.stream_type,
            "summary": self.summary,
            "value": self.value,
        }


@dataclass(frozen=True)
class JobSelection:
    """
    Selected jobs in presentation order. summaries[i] and jobs[i] describe the
    same job; jobs holds the re-fetched detail.
    """

    summaries: List[JobSummary]
    jobs: List[Row]
    mode: str
    truncated: bool = False


@dataclass(frozen=True)
class AccountResult:
    account: Account
    status: str
    counts: Mapping[str, int] = field(default_factory=dict)
    empty: Sequence[str] = ()
    errors: Sequence[Mapping[str, str]] = ()
    truncated: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "resource_group": self.account.resource_group,
            "account": self.account.name,
            "status": self.status,
            "counts": dict(sorted(self.counts.items())),
            "empty": list(self.empty),
            "errors": [dict(e) for e in self.errors],
            "jobs_truncated": self.truncated,
        }


@runtime_checkable
class AutomationService(Protocol):
    """
    Remote service contract consumed by the collectors. Every call may raise
    AzureClientError.
    """

    def list_accounts(self) -> List[Account]:
        ...

    def list_assets(self, account: Account, kind: AssetKind) -> List[Row]:
        ...

    def get_asset(self, account: Account, kind: AssetKind, key: str) -> Row:
        ...

    def list_runbooks(self, account: Account) -> List[Row]:
        ...

    def get_runbook(self, account: Account, name: str) -> Row:
        ...

    def export_runbook(
        self,
        account: Account,
        name: str,
        slot: RunbookSlot,
        dest_dir: Path,
        *,
        runbook_type: Optional[str] = None,
    ) -> Path:
        ...

    def list_jobs(self, account: Account) -> List[JobSummary]:
        ...

    def get_job(self, account: Account, job_id: str) -> Row:
        ...

    def list_job_streams(self, account: Account, job_id: str) -> List[StreamSummary]:
        ...

    def get_stream_value(self, account: Account, job_id: str, record_id: str) -> Any:
        ...


@runtime_checkable
class Sink(Protocol):
    """
    Receives result tables per account. Implementations render rows to their
    persisted formats and serialize concurrent writes per artifact.
    """

    def emit(self, account: Account, artifact: str, rows: Iterable[Row]) -> Optional[List[Path]]:
        ...

    def artifact_dir(self, account: Account, name: str) -> Path:
        ...
