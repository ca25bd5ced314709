import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from zariya.core.context import get_actor_id, get_request_id
from zariya.core.settings import settings

AUDIT_LOGGER = "zariya.audit"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "actor_id", "request_id", "stream"}


class RequestContextFilter(logging.Filter):
    """Stamp request and actor ids from the current context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.actor_id = getattr(record, "actor_id", None) or get_actor_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields are carried through."""

    def __init__(self, stream_label: str = "transactional") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": self.stream_label,
            "request_id": getattr(record, "request_id", None) or "-",
            "actor_id": getattr(record, "actor_id", None) or "-",
        }
        payload.update(
            {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS and not key.startswith("_")}
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _stdout_handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    loggers = {
        name: {"handlers": ["default"], "level": log_level, "propagate": False}
        for name in ("", "uvicorn", "uvicorn.error", "uvicorn.access")
    }
    # Audit lines go out on their own stream so they can be shipped separately.
    loggers[AUDIT_LOGGER] = {"handlers": ["audit"], "level": log_level, "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "transactional"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _stdout_handler("json", log_level),
                "audit": _stdout_handler("audit_json", log_level),
            },
            "loggers": loggers,
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s reporting_timezone=%s",
        settings.environment,
        settings.reporting_timezone,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)
