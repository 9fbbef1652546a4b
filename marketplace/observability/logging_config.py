from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

from flask import Flask, g, has_request_context, request

from marketplace.config import Config

# Extra attributes that must never reach a log sink
_REDACTED_KEYS = frozenset({"password", "token", "authorization", "server_key", "secret"})


class RequestContextFilter(logging.Filter):
    """Inject Flask request context information into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if has_request_context():
            account = getattr(g, "current_account", None)
            record.request_id = getattr(g, "request_id", None)
            record.path = request.path
            record.method = request.method
            record.account_id = getattr(account, "accountID", None)
        else:
            record.request_id = None
            record.path = None
            record.method = None
            record.account_id = None
        return True


class JsonFormatter(logging.Formatter):
    _STANDARD_ATTRS = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
        | {"message", "asctime", "request_id", "path", "method", "account_id"}
    )

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "path": getattr(record, "path", None),
            "method": getattr(record, "method", None),
            "account_id": getattr(record, "account_id", None),
        }
        extra = {
            key: ("[redacted]" if key.lower() in _REDACTED_KEYS else value)
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS
        }
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(app: Flask) -> None:
    """Configure global logging once, respecting Config toggles."""

    if not app.config.get("STRUCTURED_LOGS_ENABLED", Config.STRUCTURED_LOGS_ENABLED):
        app.logger.setLevel(Config.LOG_LEVEL)
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(Config.LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())

    # Replace handlers so app reloads and repeated create_app() calls do not duplicate output
    root_logger.handlers = [handler]
    app.logger.handlers = [handler]

    app.logger.debug("Structured logging configured.")


def ensure_request_id() -> str:
    """Return the active request id, generating one if needed."""
    if getattr(g, "request_id", None):
        return g.request_id
    incoming = request.headers.get(Config.REQUEST_ID_HEADER)
    g.request_id = incoming or str(uuid4())
    return g.request_id
