from __future__ import annotations

from typing import List, Tuple

from ..logging import get_logger
from .base import Account, AssetKind, AutomationService, Row

LOG = get_logger(__name__)


def asset_key(kind: AssetKind, summary: Row) -> str:
    return str(summary.get(kind.key_field) or "")


def collect_assets(service: AutomationService, account: Account, kind: AssetKind) -> List[Row]:
    """
    List every asset of one kind in the account and fetch each detail record.

    Returns details sorted by key (name, or job schedule id for scheduled
    runbooks). Any failure propagates: a kind is collected completely or not
    at all.
    """
    summaries = service.list_assets(account, kind)
    keyed: List[Tuple[str, Row]] = []
    for summary in summaries:
        key = asset_key(kind, summary)
        keyed.append((key, service.get_asset(account, kind, key)))
    keyed.sort(key=lambda item: item[0])
    details = [detail for _, detail in keyed]
    LOG.debug(
        "Collected %d %s",
        len(details),
        kind.value,
        extra={"account": account.namespace, "kind": kind.value, "count": len(details)},
    )
    return details
