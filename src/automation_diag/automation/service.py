from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from ..collect.base import Account, AssetKind, JobSummary, Row, RunbookSlot, StreamSummary
from ..util.errors import map_azure_error
from ..util.serialization import sanitize_for_json
from ..util.time import as_utc

T = TypeVar("T")

# AutomationClient operation group per asset kind; every group exposes
# list_by_automation_account(rg, account) and get(rg, account, key).
ASSET_OPERATION_GROUPS: Dict[AssetKind, str] = {
    AssetKind.MODULES: "module",
    AssetKind.VARIABLES: "variable",
    AssetKind.CREDENTIALS: "credential",
    AssetKind.CERTIFICATES: "certificate",
    AssetKind.CONNECTIONS: "connection",
    AssetKind.SCHEDULES: "schedule",
    AssetKind.SCHEDULED_RUNBOOKS: "job_schedule",
}

_RESOURCE_GROUP_RE = re.compile(r"/resourceGroups/([^/]+)/", re.IGNORECASE)


def resource_group_from_id(resource_id: Optional[str]) -> str:
    m = _RESOURCE_GROUP_RE.search(resource_id or "")
    return m.group(1) if m else ""


def runbook_file_extension(runbook_type: Optional[str]) -> str:
    kind = str(runbook_type or "").lower()
    if kind.startswith("python"):
        return ".py"
    if kind.startswith("graph"):
        return ".graphrunbook"
    return ".ps1"


def _enum_text(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value))


def _content_bytes(content: Any) -> bytes:
    if content is None:
        return b""
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    chunks: List[bytes] = []
    for chunk in content:
        chunks.append(chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk))
    return b"".join(chunks)


class AzureAutomationService:
    """
    AutomationService backed by azure-mgmt-automation. Every SDK failure is
    re-raised as AzureClientError naming the account and item involved.
    """

    def __init__(self, client: Any, resource_group: Optional[str] = None) -> None:
        self._client = client
        self._resource_group = resource_group

    def _call(self, context: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            mapped = map_azure_error(e, f"Azure SDK error while {context}")
            if mapped:
                raise mapped from e
            raise

    def _list(self, context: str, fn: Callable[..., Iterable[Any]], *args: Any) -> List[Any]:
        # Pagers are lazy; materialize inside _call so paging errors are mapped too.
        return self._call(context, lambda: list(fn(*args)))

    def list_accounts(self) -> List[Account]:
        ops = self._client.automation_account
        if self._resource_group:
            items = self._list(
                f"listing automation accounts in {self._resource_group}",
                ops.list_by_resource_group,
                self._resource_group,
            )
        else:
            items = self._list("listing automation accounts", ops.list)
        accounts = [
            Account(
                resource_group=resource_group_from_id(getattr(item, "id", None)) or (self._resource_group or ""),
                name=str(item.name),
                location=getattr(item, "location", None),
                account_id=getattr(item, "id", None),
            )
            for item in items
        ]
        return sorted(accounts, key=lambda a: a.sort_key())

    def _asset_ops(self, kind: AssetKind) -> Any:
        return getattr(self._client, ASSET_OPERATION_GROUPS[kind])

    def list_assets(self, account: Account, kind: AssetKind) -> List[Row]:
        items = self._list(
            f"listing {kind.value} in {account.namespace}",
            self._asset_ops(kind).list_by_automation_account,
            account.resource_group,
            account.name,
        )
        return [sanitize_for_json(item) for item in items]

    def get_asset(self, account: Account, kind: AssetKind, key: str) -> Row:
        item = self._call(
            f"getting {kind.value} '{key}' in {account.namespace}",
            self._asset_ops(kind).get,
            account.resource_group,
            account.name,
            key,
        )
        return sanitize_for_json(item)

    def list_runbooks(self, account: Account) -> List[Row]:
        items = self._list(
            f"listing runbooks in {account.namespace}",
            self._client.runbook.list_by_automation_account,
            account.resource_group,
            account.name,
        )
        return [sanitize_for_json(item) for item in items]

    def get_runbook(self, account: Account, name: str) -> Row:
        item = self._call(
            f"getting runbook '{name}' in {account.namespace}",
            self._client.runbook.get,
            account.resource_group,
            account.name,
            name,
        )
        return sanitize_for_json(item)

    def export_runbook(
        self,
        account: Account,
        name: str,
        slot: RunbookSlot,
        dest_dir: Path,
        *,
        runbook_type: Optional[str] = None,
    ) -> Path:
        ops = self._client.runbook if slot is RunbookSlot.PUBLISHED else self._client.runbook_draft
        content = self._call(
            f"exporting {slot.value.lower()} runbook '{name}' in {account.namespace}",
            lambda: _content_bytes(ops.get_content(account.resource_group, account.name, name)),
        )
        dest_dir.mkdir(parents=True, exist_ok=True)
        path = dest_dir / f"{name}{runbook_file_extension(runbook_type)}"
        path.write_bytes(content)
        return path

    def list_jobs(self, account: Account) -> List[JobSummary]:
        items = self._list(
            f"listing jobs in {account.namespace}",
            self._client.job.list_by_automation_account,
            account.resource_group,
            account.name,
        )
        jobs: List[JobSummary] = []
        for item in items:
            runbook = getattr(item, "runbook", None)
            jobs.append(
                JobSummary(
                    job_id=str(item.job_id),
                    runbook_name=str(getattr(runbook, "name", "") or ""),
                    creation_time=as_utc(getattr(item, "creation_time", None)),
                    status=_enum_text(getattr(item, "status", None)) or None,
                )
            )
        return jobs

    def get_job(self, account: Account, job_id: str) -> Row:
        item = self._call(
            f"getting job {job_id} in {account.namespace}",
            self._client.job.get,
            account.resource_group,
            account.name,
            job_id,
        )
        return sanitize_for_json(item)

    def list_job_streams(self, account: Account, job_id: str) -> List[StreamSummary]:
        items = self._list(
            f"listing streams of job {job_id} in {account.namespace}",
            self._client.job_stream.list_by_job,
            account.resource_group,
            account.name,
            job_id,
        )
        return [
            StreamSummary(
                record_id=str(item.job_stream_id),
                time=as_utc(getattr(item, "time", None)),
                stream_type=_enum_text(getattr(item, "stream_type", None)),
                summary=getattr(item, "summary", None),
            )
            for item in items
        ]

    def get_stream_value(self, account: Account, job_id: str, record_id: str) -> Any:
        item = self._call(
            f"getting stream record {record_id} of job {job_id} in {account.namespace}",
            self._client.job_stream.get,
            account.resource_group,
            account.name,
            job_id,
            record_id,
        )
        value = getattr(item, "value", None)
        if value:
            return sanitize_for_json(value)
        return getattr(item, "stream_text", None)
