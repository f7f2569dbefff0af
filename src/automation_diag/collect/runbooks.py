from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from threading import Event
from typing import AbstractSet, Dict, List, Optional, Tuple

from ..logging import get_logger
from ..util.concurrency import check_cancelled
from .base import Account, AutomationService, Row, RunbookSlot

LOG = get_logger(__name__)

STATE_NEW = "new"
STATE_PUBLISHED = "published"


@dataclass(frozen=True)
class ExportOutcome:
    exported: List[Dict[str, str]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)


def runbook_name(runbook: Row) -> str:
    return str(runbook.get("name") or "")


def runbook_state(runbook: Row) -> str:
    return str(runbook.get("state") or "")


def select_runbooks(
    service: AutomationService,
    account: Account,
    runbook_names: AbstractSet[str] = frozenset(),
) -> List[Row]:
    """
    Resolve the runbooks to process: all of them, or only exact-name members of
    runbook_names when it is non-empty. Details are re-fetched and returned
    sorted by name.
    """
    names = sorted(runbook_name(rb) for rb in service.list_runbooks(account))
    if runbook_names:
        missing = sorted(set(runbook_names) - set(names))
        if missing:
            LOG.warning(
                "Requested runbooks not found: %s",
                ", ".join(missing),
                extra={"account": account.namespace, "missing": missing},
            )
        names = [n for n in names if n in runbook_names]
    return [service.get_runbook(account, name) for name in names]


def export_slots(state: str) -> Tuple[RunbookSlot, ...]:
    """
    Published slot unless the runbook was never published; draft slot unless
    the runbook is published with no pending edits.
    """
    normalized = (state or "").strip().lower()
    slots: List[RunbookSlot] = []
    if normalized != STATE_NEW:
        slots.append(RunbookSlot.PUBLISHED)
    if normalized != STATE_PUBLISHED:
        slots.append(RunbookSlot.DRAFT)
    return tuple(slots)


def export_runbooks(
    service: AutomationService,
    account: Account,
    runbooks: List[Row],
    dest_dir: Path,
    *,
    cancel: Optional[Event] = None,
) -> ExportOutcome:
    """
    Export each runbook to the slot(s) its state allows. Each export is
    independent: failures are logged and recorded, the rest continue.
    """
    outcome = ExportOutcome()
    for runbook in runbooks:
        name = runbook_name(runbook)
        for slot in export_slots(runbook_state(runbook)):
            check_cancelled(cancel, f"exporting runbook {name}")
            slot_dir = dest_dir / slot.value.lower()
            try:
                path = service.export_runbook(
                    account,
                    name,
                    slot,
                    slot_dir,
                    runbook_type=runbook.get("runbook_type"),
                )
            except Exception as e:
                LOG.warning(
                    "Runbook export failed for %s (%s)",
                    name,
                    slot.value,
                    extra={"account": account.namespace, "runbook": name, "slot": slot.value, "error": str(e)},
                )
                outcome.errors.append({"step": "export", "item": f"{name}:{slot.value}", "error": str(e)})
                continue
            outcome.exported.append({"runbook": name, "slot": slot.value, "path": str(path)})
    return outcome
