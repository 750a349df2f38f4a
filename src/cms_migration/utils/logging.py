"""structlog setup and logging helpers for cms-bridge.

Events go through the stdlib root logger: a Rich handler on stderr at the
console level, and optionally ``logs/migration.log`` at DEBUG with one JSON
object per line.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from cms_migration import __version__

APP_NAME = "cms-bridge"

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Substrings of payload keys whose values never reach the logs
SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "pass",
        "secret",
        "token",
        "authorization",
        "cookie",
        "api_key",
    }
)

REDACTED = "[REDACTED]"


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


class JSONFileFormatter(logging.Formatter):
    """One JSON object per record.

    The message arrives pre-rendered by structlog's ConsoleRenderer; ANSI
    codes are stripped before it is embedded.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": _ANSI_PATTERN.sub("", record.getMessage()),
            "app": APP_NAME,
            "version": __version__,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _level(name: str | None, default: int) -> int:
    return getattr(logging, (name or "").upper(), default)


def _console_handler(level: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    return handler


def _file_handler(path: Path, level: int, log_format: str) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(
        JSONFileFormatter() if log_format == "json" else logging.Formatter("%(message)s")
    )
    return handler


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | Path | None = None,
    file_level: str | None = None,
) -> None:
    """Install the console handler, the optional file handler and structlog.

    Args:
        level: Console level
        log_format: ``json`` or ``console`` for the file handler
        log_file: Log file path; no file handler when None
        file_level: File level, DEBUG by default
    """
    console_level = _level(level, logging.WARNING)
    file_log_level = _level(file_level, logging.DEBUG)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(_console_handler(console_level))
    if log_file:
        root.addHandler(_file_handler(Path(log_file), file_log_level, log_format))

    # the bound logger must pass everything the most verbose handler wants
    min_level = min(console_level, file_log_level) if log_file else console_level

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            add_app_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int | None = None,
    duration_ms: float | None = None,
    **extra: Any,
) -> None:
    """One event per HTTP exchange.

    Client errors are warnings; 5xx stays at INFO because the retry policy
    decides whether it matters.
    """
    fields: dict[str, Any] = {"method": method, "url": url, **extra}
    if duration_ms is not None:
        fields["duration_ms"] = round(duration_ms, 2)

    if status_code is None:
        logger.info("api_request_started", **fields)
        return

    fields["status_code"] = status_code
    if 400 <= status_code < 500:
        logger.warning("api_request_client_error", **fields)
    elif status_code >= 500:
        logger.info("api_request_server_error", **fields)
    else:
        logger.debug("api_request_success", **fields)


def log_stage_progress(
    logger: structlog.stdlib.BoundLogger,
    stage: str,
    completed: int,
    total: int,
    **extra: Any,
) -> None:
    percentage = round(completed / total * 100, 2) if total > 0 else 0
    logger.info(
        "stage_progress",
        stage=stage,
        completed=completed,
        total=total,
        percentage=percentage,
        **extra,
    )


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: BaseException,
    context: str,
    **extra: Any,
) -> None:
    """Log ``error`` with its traceback under the event name ``context``."""
    logger.error(
        context,
        error_type=type(error).__name__,
        error_message=str(error),
        exc_info=error,
        **extra,
    )


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Copy of ``payload`` with credential-like values replaced by ``[REDACTED]``.

    Keys are matched case-insensitively against SENSITIVE_FIELDS as
    substrings, so ``session_cookie`` and ``static_token`` are caught too.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(payload, dict):
        return {
            key: REDACTED if _is_sensitive(key) else sanitize_payload(value, max_depth - 1)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item, max_depth - 1) for item in payload]
    return payload


def truncate_payload(payload: Any, max_size: int = 10000) -> str:
    """JSON-render ``payload`` and cut it at ``max_size`` characters."""
    try:
        text = json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError):
        text = str(payload)
    if len(text) <= max_size:
        return text
    return f"{text[:max_size]}\n... [TRUNCATED - {len(text)} total chars]"


def should_log_payloads(logger: structlog.stdlib.BoundLogger, log_payloads_enabled: bool) -> bool:
    """Payload logging needs the config flag and a DEBUG-enabled logger."""
    if not log_payloads_enabled:
        return False
    stdlib_logger = getattr(logger, "_logger", None)
    return stdlib_logger is None or stdlib_logger.isEnabledFor(logging.DEBUG)
