import logging.config

from app.core.config import settings


def setup_logging(level: str = None) -> None:
    """Configure root logging once at process start"""
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": (level or settings.LOG_LEVEL).upper(),
        },
        "loggers": {
            # SQL echo is controlled by DEBUG, not by the app log level
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    })
