from __future__ import annotations

import os
from threading import Lock
from typing import Any, Dict, Tuple

from ..auth.providers import AuthContext, AuthError

try:
    from azure.mgmt import automation as azure_automation  # type: ignore
except Exception:  # pragma: no cover - surfaced in CLI validate
    azure_automation = None  # type: ignore


_CLIENT_CACHE: Dict[Tuple[str, int], Any] = {}
_CLIENT_CACHE_LOCK = Lock()


def _cache_disabled() -> bool:
    return (os.getenv("AA_DIAG_DISABLE_CLIENT_CACHE") or "").strip().lower() in {"1", "true", "yes"}


def clear_client_cache() -> None:
    with _CLIENT_CACHE_LOCK:
        _CLIENT_CACHE.clear()


def make_client(client_cls: Any, ctx: AuthContext) -> Any:
    """
    Construct an Azure management client of type client_cls for the context's
    subscription. The SDK pipeline's default retry policy applies.
    """
    return client_cls(ctx.credential, ctx.subscription_id)


def get_automation_client(ctx: AuthContext) -> Any:
    """
    Return an AutomationClient for the context, reused per (subscription, credential).
    """
    if azure_automation is None:  # pragma: no cover
        raise AuthError("azure-mgmt-automation is not installed.")
    key = (ctx.subscription_id, id(ctx.credential))
    if _cache_disabled():
        return make_client(azure_automation.AutomationClient, ctx)
    with _CLIENT_CACHE_LOCK:
        client = _CLIENT_CACHE.get(key)
        if client is None:
            client = make_client(azure_automation.AutomationClient, ctx)
            _CLIENT_CACHE[key] = client
        return client
