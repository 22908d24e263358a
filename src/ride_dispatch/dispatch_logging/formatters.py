"""Log formatters for JSON and human-readable output."""

import json
import logging
from datetime import UTC, datetime

SERVICE_NAME = "ride-dispatch"
CONTEXT_FIELDS = ("ride_id", "driver_id", "rider_id", "account_id", "correlation_id")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, stamped with the record's own creation time."""

    def __init__(self, environment: str = "development"):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "env": self.environment,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(
            {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}
        )

        if record.levelno >= logging.WARNING:
            log_data["location"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [corr=%(correlation_id)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
