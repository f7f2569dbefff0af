from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ENV_LOG_LEVEL = "AA_DIAG_LOG_LEVEL"
ENV_JSON_LOGS = "AA_DIAG_JSON_LOGS"

# Attributes every LogRecord carries; anything else arrived through extra=.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {"message", "asctime"}

# Third-party loggers that log every HTTP round trip at INFO.
_NOISY_LOGGERS = ("azure", "msal", "urllib3")


def _json_encodable(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and v is not None}


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    json_logs: bool = False


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line. Extras passed via extra= are included when they
    are JSON-encodable and silently dropped otherwise.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in _record_extras(record).items():
            if _json_encodable(value):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True)


class PlainFormatter(logging.Formatter):
    """
    `<ts> LEVEL name: [step:phase] message account=<rg/name> (duration_ms=N)`
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        extras = _record_extras(record)
        parts = [
            datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="seconds"),
            record.levelname,
            f"{record.name}:",
        ]
        if "step" in extras or "phase" in extras:
            parts.append(f"[{extras.get('step', 'unknown')}:{extras.get('phase', 'unknown')}]")
        parts.append(record.getMessage())
        if extras.get("account"):
            parts.append(f"account={extras['account']}")
        if "duration_ms" in extras:
            parts.append(f"(duration_ms={extras['duration_ms']})")
        text = " ".join(parts)
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _resolve_level(name: Optional[str]) -> int:
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """
    Configure the root logger to write to stderr. Only the first call has an
    effect. AA_DIAG_LOG_LEVEL and AA_DIAG_JSON_LOGS apply when config leaves
    the level unset or JSON output disabled.
    """
    if getattr(setup_logging, "_configured", False):
        return

    level = _resolve_level((config.level if config else None) or os.getenv(ENV_LOG_LEVEL))
    json_logs = bool(config and config.json_logs) or (os.getenv(ENV_JSON_LOGS) or "").strip().lower() in {
        "1",
        "true",
        "yes",
    }

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JsonFormatter() if json_logs else PlainFormatter())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    setattr(setup_logging, "_configured", True)


def _run_file_handler(log_path: Path) -> Optional[logging.FileHandler]:
    target = str(log_path.resolve())
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return handler
    return None


def add_run_log_file(log_path: Path) -> None:
    """
    Mirror the root logger into log_path, using the console formatter. Safe to
    call twice for the same path.
    """
    if _run_file_handler(log_path) is not None:
        return
    log_path.parent.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger()
    console_formatter = next((h.formatter for h in root.handlers if h.formatter is not None), None)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(root.level)
    handler.setFormatter(console_formatter or PlainFormatter())
    root.addHandler(handler)


def remove_run_log_file(log_path: Path) -> None:
    handler = _run_file_handler(log_path)
    if handler is None:
        return
    logging.getLogger().removeHandler(handler)
    handler.close()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
