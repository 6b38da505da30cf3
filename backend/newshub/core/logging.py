import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

_LOGGING_CONFIGURED = False

STRUCTURED_FIELDS = ("run_id", "provider", "step", "event", "reason", "error_kind")


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter for structured logs.

    Structured fields are passed through ``extra=`` at the call-site, e.g.

        logger.info("Provider finished", extra={"run_id": run_id, "provider": "gdelt"})
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", "newshub_ingestion"),
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    """
    Configure root logger once with JSON output.

    Safe to call multiple times – subsequent calls are no-ops.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    _LOGGING_CONFIGURED = True
