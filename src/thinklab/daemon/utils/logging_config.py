import logging
import json
import os
import sys
from datetime import datetime, UTC
from typing import Any, Dict

# Context keys never written to log output.
REDACTED_FIELDS = frozenset({"api_key", "authorization", "password", "admin_key"})


def _redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k.lower() in REDACTED_FIELDS else v) for k, v in fields.items()}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; keyword context is merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_entry.update(_redact(extra_fields))

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO"):
    logger = logging.getLogger("thinklab")
    logger.setLevel(str(level).upper())
    logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    # Re-running setup (reload, tests) must not stack handlers
    logger.handlers = [handler]

    log_dir = os.getenv("THINKLAB_LOG_DIR")
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(os.path.join(log_dir, "thinklab.log"))
            file_handler.setFormatter(JSONFormatter())
            logger.addHandler(file_handler)
        except OSError as e:
            sys.stderr.write(f"Failed to setup file logging: {e}\n")

    # Access lines would bypass the JSON format
    logging.getLogger("uvicorn.access").disabled = True


class StructuredLogger:
    """Logger for `thinklab.*` taking context as keyword arguments.

    Usage:
        logger = StructuredLogger(__name__)
        logger.info("Credits reserved", account_id=account_id, cost=5)
    """

    def __init__(self, name: str, **context: Any):
        if name.startswith("thinklab."):
            name = name[len("thinklab."):]
        self.logger = logging.getLogger(f"thinklab.{name}")
        self.context = context

    def bind(self, **context: Any) -> "StructuredLogger":
        bound = StructuredLogger.__new__(StructuredLogger)
        bound.logger = self.logger
        bound.context = {**self.context, **context}
        return bound

    def _log(self, level: int, msg: str, fields: Dict[str, Any], exc_info: bool = False):
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, msg, exc_info=exc_info, extra={"extra_fields": {**self.context, **fields}}, stacklevel=3)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs):
        self._log(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, kwargs, exc_info=True)
