# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Structured Logging — one JSON object per line.

Components log through `bootstrap.*` loggers and pass identity context as
`extra` (trace_id, principal_id, tenant_id). When the logged exception is a
BootstrapError its taxonomy code is added as `error_code`.
"""

from __future__ import annotations

import json
import logging
import sys

CONTEXT_KEYS = ("trace_id", "principal_id", "tenant_id")

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "httpx")


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a JSON line with identity context."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        entry.update({
            key: getattr(record, key)
            for key in CONTEXT_KEYS
            if getattr(record, key, None)
        })

        if record.exc_info and record.exc_info[1] is not None:
            code = getattr(record.exc_info[1], "code", None)
            if isinstance(code, str):
                entry["error_code"] = code
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger (stdout)."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
