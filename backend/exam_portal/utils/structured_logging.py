"""
Log formatting for the portal

Upload and export code attaches context through `extra` (upload_id, phase,
table, exported, ...). In text mode the known context keys are appended to the
line as `key=value` pairs; in JSON mode every extra key becomes a field of the
record object.
"""
import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Iterable, List, Optional

# Keys shown on text log lines when present
CONTEXT_KEYS = ("request_id", "upload_id", "phase", "table", "exported", "error_code")

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "sqlalchemy.pool")

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through `extra`, in insertion order"""
    return {
        key: value for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class ContextTextFormatter(logging.Formatter):
    """Human-readable lines with the upload/export context appended"""

    def __init__(self, context_keys: Iterable[str] = CONTEXT_KEYS):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
        self.context_keys = tuple(context_keys)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        pairs = [f"{key}={context[key]}" for key in self.context_keys if context.get(key) not in (None, "")]
        return f"{line} [{' '.join(pairs)}]" if pairs else line


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        payload.update(record_context(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        # default=str covers dates, enums and UUIDs in extra
        return json.dumps(payload, default=str)


def _handlers(
    formatter: logging.Formatter,
    include_console: bool,
    log_dir: Optional[str],
    log_to_file: bool,
    use_json: bool,
    max_bytes: int,
    backup_count: int
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if include_console:
        handlers.append(logging.StreamHandler())
    if log_to_file:
        directory = log_dir or "./logs"
        os.makedirs(directory, exist_ok=True)
        name = "exam_portal.jsonl" if use_json else "exam_portal.log"
        handlers.append(RotatingFileHandler(
            os.path.join(directory, name), maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_structured_logging(
    level: str = "INFO",
    use_json: bool = False,
    include_console: bool = True,
    log_dir: Optional[str] = None,
    log_to_file: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> None:
    """
    Replace the root logger's handlers with console and/or rotating file output

    Args:
        level: Root log level name
        use_json: JSON lines instead of text
        include_console: Log to stderr
        log_dir: Directory of the log file (default ./logs)
        log_to_file: Also log to a rotating file
        max_bytes: Size at which the file rotates
        backup_count: Rotated files kept
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = JsonLineFormatter() if use_json else ContextTextFormatter()
    for handler in _handlers(formatter, include_console, log_dir, log_to_file, use_json, max_bytes, backup_count):
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
