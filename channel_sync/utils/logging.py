"""
Structured logging for the channel sync engine
SafeLogger adapter over structlog plus PII redaction for guest data in log events
"""

import logging
import re
import sys
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog


EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
# International format only, so ISO dates in log context stay readable
PHONE_PATTERN = re.compile(r"(?<!\w)\+\d[\d\s().-]{7,}\d(?!\w)")

# Keys whose values are always masked regardless of content
SENSITIVE_KEYS = {"api_key", "password", "authorization", "token", "secret", "api_key_encrypted"}
PII_KEYS = {"email", "phone", "first_name", "last_name", "guest_name"}
SENSITIVE_QUERY_PARAMS = {"ws_key", "api_key", "key", "token"}


class SafeLogger:
    """
    Logging adapter that accepts keyword context for structlog and stdlib loggers alike.
    """

    def __init__(self, logger: Any):
        self._logger = logger
        self._is_structlog = hasattr(logger, "bind")

    def _log(self, log_level: str, event: str, **kwargs) -> None:
        if self._is_structlog:
            getattr(self._logger, log_level)(event, **kwargs)
            return

        special_kwargs = {}
        for key in ("exc_info", "stack_info", "stacklevel"):
            if key in kwargs:
                special_kwargs[key] = kwargs.pop(key)
        extra = {"fields": kwargs} if kwargs else {}
        getattr(self._logger, log_level)(event, extra=extra, **special_kwargs)

    def bind(self, **kwargs) -> "SafeLogger":
        """Bind context to the logger (no-op for stdlib loggers)."""
        if self._is_structlog:
            return SafeLogger(self._logger.bind(**kwargs))
        return self

    def debug(self, event: str, **kwargs) -> None:
        self._log("debug", event, **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._log("info", event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._log("warning", event, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self._log("error", event, **kwargs)

    def exception(self, event: str, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self._log("error", event, **kwargs)

    warn = warning


def get_safe_logger(name: Optional[str] = None) -> SafeLogger:
    """Get a SafeLogger backed by structlog."""
    return SafeLogger(structlog.get_logger(name) if name else structlog.get_logger())


def redact_text(text: str) -> str:
    """Mask email addresses and phone numbers in free text."""
    text = EMAIL_PATTERN.sub("[EMAIL]", text)
    return PHONE_PATTERN.sub("[PHONE]", text)


def _redact_value(key: str, value: Any) -> Any:
    if key.lower() in SENSITIVE_KEYS:
        return "***"
    if key.lower() in PII_KEYS and value:
        return "[REDACTED]"
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {k: _redact_value(str(k), v) for k, v in value.items()}
    return value


def redact_pii(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor that strips guest PII and credentials from every event."""
    for key, value in list(event_dict.items()):
        if key in ("timestamp", "level", "logger"):
            continue
        event_dict[key] = _redact_value(key, value)
    return event_dict


def sanitize_url(url: str) -> str:
    """Remove credentials from a URL before it is logged."""
    parsed = urlparse(url)
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"

    params = parse_qs(parsed.query, keep_blank_values=True)
    sanitized = {
        name: ["<REDACTED>"] if name.lower() in SENSITIVE_QUERY_PARAMS else values
        for name, values in params.items()
    }
    return urlunparse((
        parsed.scheme,
        netloc,
        parsed.path,
        parsed.params,
        urlencode(sanitized, doseq=True),
        parsed.fragment,
    ))


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog and the stdlib root logger for worker processes."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level.upper()))

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            redact_pii,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
