"""Logging setup for the Mento backend.

All loggers live under the ``mento`` namespace so a single handler
configured at startup covers every module.
"""

import json
import logging
import sys
from datetime import datetime, timezone

ROOT_LOGGER = "mento"

_configured = False


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = getattr(record, "event", None)
        if extra:
            payload["event"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Attach a stream handler to the ``mento`` logger (idempotent)."""
    global _configured
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s | %(message)s")
        )
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger, namespaced under ``mento`` if it is not already."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


_auth_logger = get_logger("mento.auth.events")


def log_auth_event(
    event: str,
    subject: str | None,
    success: bool,
    reason: str | None = None,
) -> None:
    """Record an authentication or security event.

    ``subject`` is a user id or a masked mobile number, never a secret.
    """
    outcome = "ok" if success else "fail"
    message = f"AUTH {event} | subject={subject or '-'} | {outcome}"
    if reason:
        message += f" | reason={reason}"
    level = logging.INFO if success else logging.WARNING
    _auth_logger.log(
        level,
        message,
        extra={"event": {"name": event, "subject": subject, "success": success, "reason": reason}},
    )


def mask_mobile(mobile: str) -> str:
    """Mask all but the last four digits of a mobile number for logs."""
    if len(mobile) <= 4:
        return "*" * len(mobile)
    return "*" * (len(mobile) - 4) + mobile[-4:]
