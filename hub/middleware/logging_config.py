"""
Logging setup for the Hub.

Records go to stderr as one JSON object per line (``LOG_FORMAT=json``, the
production default) or as plain text. Inside a request the signed-in
user's ``auth_id`` is attached to every record that does not carry one.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Extra attributes copied from ``logger.info(..., extra={...})`` into JSON output
_EXTRA_KEYS = ("auth_id", "process_id", "task_id", "survey_id", "wave_id")

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "anthropic", "httpx")


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, ensure_ascii=False, default=str)


class CurrentUserFilter(logging.Filter):
    """Stamp ``auth_id`` from ``g.current_user`` during a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "auth_id", None) is None and has_request_context():
            user = getattr(g, "current_user", None)
            if user is not None:
                record.auth_id = user.auth_id
        return True


def configure_logging(app):
    """Install one stderr handler on the root logger.

    ``LOG_FORMAT`` picks ``json`` or ``text``; ``LOG_LEVEL`` the threshold.
    """
    level_name = (app.config.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    as_json = app.config.get("LOG_FORMAT", "json") == "json"

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else logging.Formatter(TEXT_FORMAT, "%H:%M:%S"))
    handler.addFilter(CurrentUserFilter())

    root = logging.getLogger()
    # create_app may run more than once per process (tests)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING"):
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if as_json else "text")
