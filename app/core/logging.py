import logging
import os
import sys
from logging.config import dictConfig

from app.core.config import APP_ENV

LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if APP_ENV == "development" else "INFO").upper()

# loggers that write their own line format and must not reach the root handler
DEDICATED_LOGGERS = {
    # request_logging_middleware
    "access": "access_console",
    # activity_helpers.log_workflow_change
    "audit": "audit_console",
}


def _stdout(formatter: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "stream": sys.stdout,
        "formatter": formatter,
    }


def setup_logging():
    loggers = {
        name: {"handlers": [handler], "level": "INFO", "propagate": False}
        for name, handler in DEDICATED_LOGGERS.items()
    }
    # job start/finish lines every sweep interval are noise
    loggers["apscheduler"] = {"level": "WARNING"}
    loggers["app.services.notifications"] = {"level": LOG_LEVEL}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                },
                "access": {
                    "format": (
                        "%(asctime)s | ACCESS | %(request_id)s | "
                        "%(client_addr)s | %(actor)s | %(method)s | "
                        "%(path)s | %(status_code)s | "
                        "%(process_time_ms)sms"
                    ),
                },
                "audit": {
                    "format": (
                        "%(asctime)s | AUDIT | %(message)s | "
                        "quotation=%(quotation_id)s | actor=%(actor_id)s | "
                        "before=%(before)s | after=%(after)s | "
                        "at=%(timestamp)s"
                    ),
                },
            },
            "handlers": {
                "console": _stdout("default"),
                "access_console": _stdout("access"),
                "audit_console": _stdout("audit"),
            },
            "loggers": loggers,
            "root": {
                "level": LOG_LEVEL,
                "handlers": ["console"],
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured at %s", LOG_LEVEL)
