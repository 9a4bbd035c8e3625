"""
Logging for the collector, CLI and API.

Everything goes through the root logger. ``setup_logging`` installs one
console handler and optionally a rotating file; both redact credentials.
Two named loggers carry side channels: ``rightsizer.audit`` records
recommendation state changes and ``rightsizer.performance`` records
phase timings.
"""

import json
import logging
import logging.handlers
import re
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Record attributes copied into JSON output when a caller passes them via ``extra``
CONTEXT_FIELDS = ('cycle_id', 'phase', 'namespace', 'pod', 'container', 'outcome', 'duration',
                  'event_type', 'action', 'resource', 'result', 'details')

QUIET_LOGGERS = ('urllib3', 'kubernetes', 'sqlalchemy.engine')


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
            "thread": record.threadName,
        }
        payload.update({name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)})

        if record.exc_info:
            exc_type, exc, tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": traceback.format_exception(exc_type, exc, tb),
            }
        return json.dumps(payload, default=str)


class SecurityFilter(logging.Filter):
    """Mask passwords in connection URLs and secret-looking key=value pairs"""

    URL_CREDENTIALS = re.compile(r'(?P<scheme>[a-z][a-z0-9+.-]*://)(?P<user>[^:/@\s]+):(?P<password>[^@\s]+)@')
    KEY_VALUE = re.compile(r'(?P<key>password|secret|token)\s*[:=]\s*(?P<value>[^\s,}]+)', re.IGNORECASE)

    @classmethod
    def redact(cls, message: str) -> str:
        masked = cls.URL_CREDENTIALS.sub(r'\g<scheme>\g<user>:***@', message)
        return cls.KEY_VALUE.sub(r'\g<key>=***REDACTED***', masked)

    def filter(self, record: logging.LogRecord) -> bool:
        original = record.getMessage()
        masked = self.redact(original)
        if masked != original:
            # Freeze the rendered message so handlers never see the raw args
            record.msg, record.args = masked, None
        return True


def _rotating_file(path: Path, max_bytes: int, backup_count: int,
                   formatter: logging.Formatter) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setFormatter(formatter)
    handler.addFilter(SecurityFilter())
    return handler


class AuditLogger:
    """Writes who changed which recommendation to ``rightsizer.audit``"""

    def __init__(self, log_file: Optional[Path] = None, max_bytes: int = 10485760, backup_count: int = 10):
        self.logger = logging.getLogger('rightsizer.audit')
        self.logger.setLevel(logging.INFO)
        if log_file:
            self.logger.addHandler(_rotating_file(Path(log_file), max_bytes, backup_count,
                                                  StructuredFormatter()))

    def log_event(self, event_type: str, action: str, resource: Optional[str] = None,
                  result: str = "success", details: Optional[Dict[str, Any]] = None):
        message = " ".join(part for part in (f"Audit: {event_type} - {action}", resource) if part)
        extra = {
            'event_type': event_type,
            'action': action,
            'resource': resource,
            'result': result,
            'details': details or {},
        }
        if result == "success":
            self.logger.info(message, extra=extra)
        else:
            self.logger.warning(f"{message} failed", extra=extra)


class PerformanceLogger:
    """Times named operations; the latest duration of each is kept in ``last_durations``"""

    def __init__(self):
        self.logger = logging.getLogger('rightsizer.performance')
        self.last_durations: Dict[str, float] = {}
        self._lock = threading.Lock()

    @contextmanager
    def timer(self, operation: str, **context) -> Iterator[None]:
        started = time.monotonic()
        try:
            yield
        finally:
            elapsed = time.monotonic() - started
            with self._lock:
                self.last_durations[operation] = elapsed
            self.logger.info(f"Performance: {operation} completed in {elapsed:.3f}s",
                             extra={'duration': elapsed, **context})


_audit_logger = AuditLogger()
_performance_logger = PerformanceLogger()


def setup_logging(level: str = "INFO",
                  log_file: Optional[Path] = None,
                  structured: bool = False,
                  console: bool = True,
                  console_handler: Optional[logging.Handler] = None,
                  audit_file: Optional[Path] = None,
                  max_bytes: int = 10485760,
                  backup_count: int = 5,
                  fmt: str = DEFAULT_FORMAT):
    """
    Replace the root logger's handlers with the configured ones.

    A caller-supplied console handler (e.g. rich's RichHandler) keeps its own
    formatting unless structured output is requested.
    """
    global _audit_logger

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = StructuredFormatter() if structured else logging.Formatter(fmt)

    if console:
        stream = console_handler or logging.StreamHandler(sys.stdout)
        if structured or console_handler is None:
            stream.setFormatter(formatter)
        stream.addFilter(SecurityFilter())
        root.addHandler(stream)

    if log_file:
        root.addHandler(_rotating_file(Path(log_file), max_bytes, backup_count, formatter))

    if audit_file:
        _audit_logger = AuditLogger(audit_file)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_audit_logger() -> AuditLogger:
    return _audit_logger


def get_performance_logger() -> PerformanceLogger:
    return _performance_logger
