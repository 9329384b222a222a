"""
Logging setup.

Modules log through logging.getLogger(__name__). configure_logging() is
called once from the application lifespan and installs:

  - a console handler for the "portal" logger tree at LOG_LEVEL
  - an optional file handler for "portal.audit" when AUDIT_LOG_FILE is set,
    giving security events their own append-only file
"""

import logging.config

from portal.config import settings


def configure_logging() -> None:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    }
    audit_handlers = ["console"]

    if settings.AUDIT_LOG_FILE:
        handlers["audit_file"] = {
            "class": "logging.FileHandler",
            "filename": settings.AUDIT_LOG_FILE,
            "mode": "a",
            "encoding": "utf-8",
            "formatter": "audit",
        }
        audit_handlers.append("audit_file")

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
                "audit": {
                    "format": "%(asctime)s | SECURITY | %(message)s",
                },
            },
            "handlers": handlers,
            "loggers": {
                "portal": {
                    "handlers": ["console"],
                    "level": settings.LOG_LEVEL,
                    "propagate": False,
                },
                "portal.audit": {
                    "handlers": audit_handlers,
                    "level": "INFO",
                    "propagate": False,
                },
            },
        }
    )
