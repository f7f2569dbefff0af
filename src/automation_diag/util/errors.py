from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    INCOMPLETE = 1
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    AZURE_ERROR = 4
    RUNTIME_ERROR = 5


class DiagError(Exception):
    """Base error for the diagnostic collector."""


class ConfigError(DiagError):
    """Raised for configuration or argument issues."""


class AuthResolutionError(DiagError):
    """Raised when authentication cannot be resolved."""


class AzureClientError(DiagError):
    """Raised when Azure SDK operations fail."""


class ExportError(DiagError):
    """Raised when writing result artifacts fails."""


class CollectionCancelled(DiagError):
    """Raised when the run was cancelled or timed out before work was scheduled."""


_EXIT_CODES: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
    ((ConfigError, ValueError), ExitCode.CONFIG_ERROR),
    ((AuthResolutionError,), ExitCode.AUTH_ERROR),
    ((AzureClientError,), ExitCode.AZURE_ERROR),
)


def as_exit_code(exc: BaseException) -> int:
    """
    Process exit code for an error that escaped a command. Anything not mapped
    (export failures, cancellation, crashes) is a runtime error, never the
    INCOMPLETE code that a finished run with partial accounts uses.
    """
    for types, code in _EXIT_CODES:
        if isinstance(exc, types):
            return int(code)
    return int(ExitCode.RUNTIME_ERROR)


def _azure_error_types() -> tuple[type[BaseException], ...]:
    try:
        from azure.core.exceptions import AzureError  # type: ignore
    except Exception:
        return ()
    return (AzureError,)


def is_azure_error(exc: BaseException) -> bool:
    """
    Return True if the exception looks like an Azure SDK error.
    """
    azure_types = _azure_error_types()
    if azure_types and isinstance(exc, azure_types):
        return True
    return exc.__class__.__module__.startswith("azure.")


def map_azure_error(exc: BaseException, context: str) -> AzureClientError | None:
    """
    Wrap Azure SDK errors with AzureClientError for consistent exit codes.
    """
    if not is_azure_error(exc):
        return None
    return AzureClientError(f"{context}: {exc}")
