from __future__ import annotations

from typing import AbstractSet, List

from ..collect.base import Account, AutomationService
from ..logging import get_logger
from ..util.errors import ConfigError

LOG = get_logger(__name__)


def resolve_accounts(service: AutomationService, account_names: AbstractSet[str] = frozenset()) -> List[Account]:
    """
    Return the accounts in scope, sorted by name then resource group: every
    account in the subscription, or only those whose name is in account_names.

    Raises ConfigError when nothing remains, since there is nothing to collect.
    """
    accounts = sorted(service.list_accounts(), key=lambda a: a.sort_key())
    if account_names:
        found = {a.name for a in accounts}
        missing = sorted(set(account_names) - found)
        if missing:
            LOG.warning("Requested automation accounts not found: %s", ", ".join(missing), extra={"missing": missing})
        accounts = [a for a in accounts if a.name in account_names]
    if not accounts:
        if account_names:
            raise ConfigError(f"No automation accounts matched: {', '.join(sorted(account_names))}")
        raise ConfigError("No automation accounts found in the subscription")
    return accounts
