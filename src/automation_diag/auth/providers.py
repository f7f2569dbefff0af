from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..util.errors import map_azure_error

try:
    from azure import identity as azure_identity  # type: ignore
except Exception:  # pragma: no cover - import error surfaced at runtime/CI
    azure_identity = None  # type: ignore


AUTH_METHODS = {"auto", "cli", "environment", "managed_identity"}
MANAGEMENT_SCOPE = "https://management.azure.com/.default"


@dataclass(frozen=True)
class AuthContext:
    """
    Holds a resolved azure-identity credential plus the subscription it is
    scoped to. SDK clients are built from this.
    """

    method: str  # auto|cli|environment|managed_identity (resolved final)
    credential: Any
    subscription_id: str
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None


class AuthError(RuntimeError):
    pass


def _require_identity() -> None:
    if azure_identity is None:
        raise AuthError("azure-identity is not installed. Install dependencies and try again: pip install .")


def resolve_auth(
    method: str,
    subscription_id: Optional[str],
    tenant_id: Optional[str] = None,
    client_id: Optional[str] = None,
) -> AuthContext:
    """
    Resolve a credential according to the requested method.
    - auto: DefaultAzureCredential (environment -> managed identity -> Azure CLI -> ...)
    - cli: AzureCliCredential (az login session)
    - environment: EnvironmentCredential (AZURE_CLIENT_ID/SECRET/TENANT_ID)
    - managed_identity: ManagedIdentityCredential, optionally user-assigned via client_id
    Credentials are lazy; no token is requested here.
    """
    _require_identity()
    method = (method or "auto").lower()
    if method not in AUTH_METHODS:
        raise AuthError(f"Unsupported auth method: {method}")
    if not subscription_id:
        raise AuthError("Subscription id is required. Provide --subscription or set AZURE_SUBSCRIPTION_ID.")

    kwargs: Dict[str, Any] = {}
    try:
        if method == "cli":
            if tenant_id:
                kwargs["tenant_id"] = tenant_id
            credential = azure_identity.AzureCliCredential(**kwargs)
        elif method == "environment":
            credential = azure_identity.EnvironmentCredential()
        elif method == "managed_identity":
            if client_id:
                kwargs["client_id"] = client_id
            credential = azure_identity.ManagedIdentityCredential(**kwargs)
        else:
            if client_id:
                kwargs["managed_identity_client_id"] = client_id
            credential = azure_identity.DefaultAzureCredential(**kwargs)
    except Exception as e:
        mapped = map_azure_error(e, f"Azure SDK error while creating {method} credential")
        if mapped:
            raise mapped from e
        raise AuthError(f"Failed to create {method} credential: {e}") from e

    return AuthContext(
        method=method,
        credential=credential,
        subscription_id=subscription_id,
        tenant_id=tenant_id,
        client_id=client_id,
    )


def validate_credential(ctx: AuthContext) -> None:
    """
    Request a management-plane token to prove the credential works.
    """
    try:
        ctx.credential.get_token(MANAGEMENT_SCOPE)
    except Exception as e:
        raise AuthError(f"Failed to acquire a token with {ctx.method} credential: {e}") from e
