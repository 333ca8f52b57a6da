import logging.config

from app.settings import get_settings


def configure_logging() -> None:
    settings = get_settings()
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default"},
        },
        "loggers": {
            "app": {"handlers": ["console"], "level": settings.LOG_LEVEL.upper(), "propagate": False},
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
    })
