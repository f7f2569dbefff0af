from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .collect.base import DEFAULT_JOB_WINDOW_SIZE, CollectionFilters
from .util.errors import ConfigError
from .util.time import utc_now_iso

DEFAULT_WORKERS_ACCOUNT = 2
DEFAULT_WORKERS_ASSETS = 4
DEFAULT_WORKERS_JOBS = 4
DEFAULT_FORMATS = ["txt", "csv", "json"]
SUPPORTED_FORMATS = set(DEFAULT_FORMATS)
AUTH_METHODS = {"auto", "cli", "environment", "managed_identity"}

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class _Setting:
    kind: str  # bool|int|list|path|str
    default: Any = None
    env: Optional[str] = None


# Every configurable key, its type, default and environment variable.
# Precedence (low -> high): default < config file < env < CLI.
SETTINGS: Dict[str, _Setting] = {
    "outdir": _Setting("path", env="AA_DIAG_OUTDIR"),
    "accounts": _Setting("list", env="AA_DIAG_ACCOUNTS"),
    "runbooks": _Setting("list", env="AA_DIAG_RUNBOOKS"),
    "job_ids": _Setting("list", env="AA_DIAG_JOB_IDS"),
    "all_stream_values": _Setting("bool", False, "AA_DIAG_ALL_STREAM_VALUES"),
    "number_of_jobs": _Setting("int", DEFAULT_JOB_WINDOW_SIZE, "AA_DIAG_NUMBER_OF_JOBS"),
    "resource_group": _Setting("str", env="AA_DIAG_RESOURCE_GROUP"),
    "subscription_id": _Setting("str", env="AZURE_SUBSCRIPTION_ID"),
    "tenant_id": _Setting("str", env="AZURE_TENANT_ID"),
    "client_id": _Setting("str", env="AA_DIAG_CLIENT_ID"),
    "auth": _Setting("str", "auto", "AA_DIAG_AUTH"),
    "workers_account": _Setting("int", DEFAULT_WORKERS_ACCOUNT, "AA_DIAG_WORKERS_ACCOUNT"),
    "workers_assets": _Setting("int", DEFAULT_WORKERS_ASSETS, "AA_DIAG_WORKERS_ASSETS"),
    "workers_jobs": _Setting("int", DEFAULT_WORKERS_JOBS, "AA_DIAG_WORKERS_JOBS"),
    "formats": _Setting("list", DEFAULT_FORMATS, "AA_DIAG_FORMATS"),
    "timeout": _Setting("int", env="AA_DIAG_TIMEOUT"),
    "zip": _Setting("bool", False, "AA_DIAG_ZIP"),
    "progress": _Setting("bool", False, "AA_DIAG_PROGRESS"),
    "json_logs": _Setting("bool", False, "AA_DIAG_JSON_LOGS"),
    "log_level": _Setting("str", "INFO", "AA_DIAG_LOG_LEVEL"),
}


@dataclass(frozen=True)
class RunConfig:
    outdir: Path
    json_logs: bool = False
    log_level: str = "INFO"

    # Scope
    accounts: Optional[List[str]] = None
    runbooks: Optional[List[str]] = None
    job_ids: Optional[List[str]] = None
    all_stream_values: bool = False
    number_of_jobs: int = DEFAULT_JOB_WINDOW_SIZE
    resource_group: Optional[str] = None

    # Output
    formats: List[str] = field(default_factory=lambda: list(DEFAULT_FORMATS))
    zip: bool = False
    progress: bool = False

    # Performance
    workers_account: int = DEFAULT_WORKERS_ACCOUNT
    workers_assets: int = DEFAULT_WORKERS_ASSETS
    workers_jobs: int = DEFAULT_WORKERS_JOBS
    timeout: Optional[int] = None  # seconds; None = no limit

    # Auth
    auth: str = "auto"
    subscription_id: Optional[str] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None  # user-assigned managed identity

    collected_at: str = field(default_factory=utc_now_iso)

    def filters(self) -> CollectionFilters:
        return CollectionFilters(
            account_names=frozenset(self.accounts or ()),
            runbook_names=frozenset(self.runbooks or ()),
            job_ids=frozenset(self.job_ids or ()),
            include_all_stream_values=self.all_stream_values,
            job_window_size=self.number_of_jobs,
        )


def _split_list(value: Any) -> List[str]:
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = [str(v) for v in value]
    else:
        raise ValueError("expected a list of strings or a comma-separated string")
    # Order-preserving de-duplication
    return list(dict.fromkeys(p.strip() for p in parts if p.strip()))


def _coerce(key: str, value: Any) -> Any:
    """
    Convert a raw file or environment value to the key's declared type.
    Raises ValueError naming the key on mismatch.
    """
    kind = SETTINGS[key].kind
    if kind == "list":
        try:
            return _split_list(value)
        except ValueError as e:
            raise ValueError(f"Config field '{key}': {e}") from e
    if kind == "bool":
        if isinstance(value, bool):
            return value
        word = str(value).strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise ValueError(f"Config field '{key}' must be a boolean")
    if kind == "int":
        if isinstance(value, bool):
            raise ValueError(f"Config field '{key}' must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Config field '{key}' must be an integer") from None
    if kind == "path":
        if not isinstance(value, (str, Path)):
            raise ValueError(f"Config field '{key}' must be a string path")
        return value
    if not isinstance(value, str):
        raise ValueError(f"Config field '{key}' must be a string")
    return value


def _read_config_file(path: Path) -> Dict[str, Any]:
    """
    Load a YAML or JSON (by suffix) config file. Unknown keys are warned about
    and dropped; null values are treated as unset.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if path.suffix.lower() == ".json" else (yaml.safe_load(text) or {})
    except (ValueError, yaml.YAMLError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")

    unknown = sorted(set(data) - set(SETTINGS))
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    return {k: _coerce(k, v) for k, v in data.items() if k in SETTINGS and v is not None}


def _read_env() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, setting in SETTINGS.items():
        raw = (os.getenv(setting.env) or "").strip() if setting.env else ""
        if not raw:
            continue
        try:
            values[key] = _coerce(key, raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value in {setting.env}: {e}") from e
    return values


def _read_cli(ns: argparse.Namespace) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, setting in SETTINGS.items():
        value = getattr(ns, key, None)
        if value is None:
            continue
        values[key] = _split_list(value) if setting.kind == "list" else value
    return values


def _validate(merged: Mapping[str, Any]) -> None:
    for key in ("number_of_jobs", "workers_account", "workers_assets", "workers_jobs"):
        value = merged.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ConfigError(f"{key} must be an integer >= 1 (got {value!r})")
    timeout = merged.get("timeout")
    if timeout is not None and timeout < 1:
        raise ConfigError(f"timeout must be a positive number of seconds (got {timeout!r})")
    formats = merged.get("formats") or []
    if not formats or set(formats) - SUPPORTED_FORMATS:
        raise ConfigError(
            f"formats must be a non-empty subset of {', '.join(DEFAULT_FORMATS)} (got {', '.join(formats) or 'none'})"
        )
    if merged.get("auth") not in AUTH_METHODS:
        raise ConfigError(f"auth must be one of: {', '.join(sorted(AUTH_METHODS))}")


def _run_dir(base: Optional[Any]) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return Path(base or "out") / stamp


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aa-diag", description="Azure Automation diagnostic collector")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument("--json-logs", action=argparse.BooleanOptionalAction, default=None, help="Emit JSON log lines")
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument("--auth", default=None, choices=sorted(AUTH_METHODS), help="Credential type (default: auto)")
        p.add_argument("--subscription", dest="subscription_id", default=None, help="Azure subscription id")
        p.add_argument("--tenant", dest="tenant_id", default=None, help="Microsoft Entra tenant id")
        p.add_argument("--client-id", default=None, help="Client id of a user-assigned managed identity")
        p.add_argument("--resource-group", default=None, help="Only consider accounts in this resource group")

    p_run = subparsers.add_parser("run", help="Collect diagnostics")
    add_common(p_run)
    p_run.add_argument("--outdir", type=Path, default=None, help="Output base directory; results go to <outdir>/<UTC ts>")
    p_run.add_argument("--accounts", default=None, help="Comma-separated automation account names")
    p_run.add_argument("--runbooks", default=None, help="Comma-separated runbook names")
    p_run.add_argument(
        "--job-ids",
        default=None,
        help="Comma-separated job ids (takes precedence over --runbooks and --number-of-jobs)",
    )
    p_run.add_argument(
        "--all-stream-values",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Fetch the full value of every job stream record, not only Error records",
    )
    p_run.add_argument(
        "--number-of-jobs",
        type=int,
        default=None,
        help=f"Most recent jobs to collect per account (default {DEFAULT_JOB_WINDOW_SIZE})",
    )
    for scope, default, what in (
        ("account", DEFAULT_WORKERS_ACCOUNT, "accounts collected in parallel"),
        ("assets", DEFAULT_WORKERS_ASSETS, "asset kinds collected in parallel per account"),
        ("jobs", DEFAULT_WORKERS_JOBS, "jobs whose streams are collected in parallel per account"),
    ):
        p_run.add_argument(f"--workers-{scope}", type=int, default=None, help=f"Max {what} (default {default})")
    p_run.add_argument("--formats", default=None, help="Comma-separated output formats: txt,csv,json")
    p_run.add_argument("--timeout", type=int, default=None, help="Stop scheduling new work after N seconds")
    p_run.add_argument(
        "--zip", action=argparse.BooleanOptionalAction, default=None, help="Also archive the result directory"
    )
    p_run.add_argument(
        "--progress", action=argparse.BooleanOptionalAction, default=None, help="Show a progress bar and summary table"
    )

    add_common(subparsers.add_parser("validate-auth", help="Acquire a token and list visible automation accounts"))
    add_common(subparsers.add_parser("list-accounts", help="List automation accounts in the subscription"))
    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[List[str]] = None,
) -> Tuple[str, RunConfig]:
    """
    Parse arguments and layer defaults, config file, environment and CLI
    values into a validated RunConfig.

    Returns (command, config). For `run` the output directory is a fresh
    UTC-timestamped child of --outdir.
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command

    merged: Dict[str, Any] = {key: setting.default for key, setting in SETTINGS.items()}
    if getattr(ns, "config", None):
        merged.update(_read_config_file(Path(ns.config)))
    merged.update(_read_env())
    merged.update(_read_cli(ns))

    merged["formats"] = [str(f).lower() for f in merged["formats"] or []]
    merged["auth"] = str(merged["auth"] or "auto").lower()
    _validate(merged)

    if command == "run":
        outdir = _run_dir(merged["outdir"])
    else:
        outdir = Path(merged["outdir"]) if merged["outdir"] else Path.cwd()

    cfg = RunConfig(
        outdir=outdir,
        json_logs=merged["json_logs"],
        log_level=str(merged["log_level"] or "INFO").upper(),
        accounts=merged["accounts"] or None,
        runbooks=merged["runbooks"] or None,
        job_ids=merged["job_ids"] or None,
        all_stream_values=merged["all_stream_values"],
        number_of_jobs=merged["number_of_jobs"],
        resource_group=merged["resource_group"] or None,
        formats=[f for f in DEFAULT_FORMATS if f in merged["formats"]],
        zip=merged["zip"],
        progress=merged["progress"],
        workers_account=merged["workers_account"],
        workers_assets=merged["workers_assets"],
        workers_jobs=merged["workers_jobs"],
        timeout=merged["timeout"],
        auth=merged["auth"],
        subscription_id=merged["subscription_id"] or None,
        tenant_id=merged["tenant_id"] or None,
        client_id=merged["client_id"] or None,
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    """
    Config as recorded in run_summary.json and report.md. The client id of a
    managed identity is left out.
    """
    keys = (
        "accounts",
        "runbooks",
        "job_ids",
        "all_stream_values",
        "number_of_jobs",
        "resource_group",
        "formats",
        "zip",
        "workers_account",
        "workers_assets",
        "workers_jobs",
        "timeout",
        "auth",
        "subscription_id",
        "tenant_id",
        "json_logs",
        "log_level",
        "collected_at",
    )
    out: Dict[str, Any] = {"outdir": str(cfg.outdir)}
    out.update({k: getattr(cfg, k) for k in keys})
    return out
