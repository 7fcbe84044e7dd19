"""
Structured logging for the usage service.

setup_logging() installs one stdout handler on the root logger: JSON lines
in production, a coloured single-line format in development. Every record
passes through two filters. The first stamps the current request id and
caller uid (from contextvars, set by the request middleware and the auth
dependency). The second scrubs OpenAI/Google keys, bearer headers and
Firebase ID tokens out of the message.

Modules log through logging.getLogger(__name__) and pass structured
fields with ``extra=``. Uids in message text go through mask_user_id().
"""

import json
import logging
import re
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

DEFAULT_SERVICE_NAME = "linkranger-usage-api"

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

REDACTED = "[REDACTED]"

_REDACTIONS: Tuple[re.Pattern, ...] = (
    re.compile(r'(?:api[_-]?key|secret|token|authorization)["\']?\s*[:=]\s*["\']?[^\s,"\'}]+', re.IGNORECASE),
    re.compile(r'bearer\s+[\w.-]+', re.IGNORECASE),
    re.compile(r'sk-[\w-]{16,}'),
    re.compile(r'AIza[\w-]{30,}'),
    re.compile(r'eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+'),
)

# Attributes every LogRecord has; anything else came in through extra=
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "request_id", "user_id",
}


def redact_sensitive_data(message: str) -> str:
    """Replace keys and tokens in ``message`` with [REDACTED]."""
    if not message:
        return message
    for pattern in _REDACTIONS:
        message = pattern.sub(REDACTED, message)
    return message


def mask_user_id(user_id: Optional[str]) -> str:
    """First 8 characters of a uid, for log lines."""
    if not user_id:
        return "-"
    return user_id if len(user_id) <= 8 else f"{user_id[:8]}..."


def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    if request_id is not None:
        _request_id.set(request_id)
    if user_id is not None:
        _user_id.set(user_id)


def clear_request_context() -> None:
    _request_id.set(None)
    _user_id.set(None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    """Stamp request_id and the masked caller uid on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        record.user_id = mask_user_id(_user_id.get())
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact credentials from the message and its string args."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_sensitive_data(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_sensitive_data(a) if isinstance(a, str) else a for a in record.args
            )
        return True


def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "...", "level": "INFO", "logger": "src.usage.manager",
         "message": "...", "service": "linkranger-usage-api",
         "request_id": "...", "user_id": "abcdefgh...", "extra": {...}}

    ERROR and above also carry the source location.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if record.levelno >= logging.ERROR:
            payload["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        fields = extra_fields(record)
        if fields:
            payload["extra"] = fields
        return json.dumps(payload, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """HH:MM:SS LEVEL [request] [uid] logger: message {extra}"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        request_id = getattr(record, "request_id", "-")[:8]
        when = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        line = (
            f"{self.DIM}{when}{self.RESET} {color}{record.levelname:<8}{self.RESET} "
            f"{self.DIM}[{request_id:>8}] [{getattr(record, 'user_id', '-'):>11}]{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        fields = extra_fields(record)
        if fields:
            line += f" {self.DIM}{fields}{self.RESET}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    service_name: str = DEFAULT_SERVICE_NAME,
    log_level: Optional[str] = None,
    force_json: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the root logger. Call once, from the app lifespan or a script.

    Level and format default to LoggingSettings; production always logs
    JSON regardless of LOG_FORMAT_JSON.
    """
    from src.config import get_settings

    settings = get_settings()
    level = getattr(logging, (log_level or settings.logging.log_level).upper(), logging.INFO)
    if force_json is None:
        force_json = settings.logging.log_format_json or settings.is_production

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JSONFormatter(service_name) if force_json else DevelopmentFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "openai", "asyncpg"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root.info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(level), "json": force_json, "service": service_name},
    )
    return root


class Timer:
    """
    Measure a block and log its duration.

        with Timer("ledger.append_event", logger) as timer:
            await ledger.append_event(event)
        timer.elapsed_ms
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None, log_level: int = logging.DEBUG):
        self.name = name
        self.logger = logger
        self.log_level = log_level
        self.elapsed_ms = 0.0
        self._started = 0.0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        if self.logger is not None:
            self.logger.log(
                self.log_level,
                f"{self.name} took {self.elapsed_ms:.1f}ms",
                extra={"operation": self.name, "duration_ms": round(self.elapsed_ms, 2), "ok": exc_type is None},
            )
