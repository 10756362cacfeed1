"""JSON-lines logging for the verifier service.

Every record is one JSON object on stdout. Per-request context (request id,
route, peer address, rate-limit identity) is attached by callers through
`extra=` and copied into the object when present.

Environment:
    TLB_LOG_LEVEL: Root level name (default INFO; unknown names fall back to INFO).
    TLB_LOG_FILE: Optional path; records are appended there as well.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "route", "remote_addr", "client_id")


class JsonFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON object.

    Fields: ts (UTC ISO-8601), level, logger, msg, any REQUEST_FIELDS set on
    the record, and exc_info as formatted traceback text.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field)) for field in REQUEST_FIELDS if hasattr(record, field)
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _level_from_env() -> int:
    name = os.getenv("TLB_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    """Install JSON handlers on the root logger, replacing any existing ones."""
    formatter = JsonFormatter()

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(formatter)
    handlers = [stdout]

    log_file = os.getenv("TLB_LOG_FILE")
    if log_file:
        appender = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        appender.setFormatter(formatter)
        handlers.append(appender)

    root = logging.getLogger()
    root.setLevel(_level_from_env())
    root.handlers = handlers
