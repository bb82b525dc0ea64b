import logging
import logging.config

from sqlrepo.config import get_settings


def setup_logging(level: str | None = None) -> None:
    """
    Configure log output for the sqlrepo loggers.
    Repository failures are reported here as warnings; successful operations at DEBUG.
    """
    settings = get_settings()
    log_level = level or ("DEBUG" if settings.debug else settings.log_level.upper())

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "sqlrepo": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
            # SQL echo is driven by Settings.debug, keep its logger quiet otherwise
            "sqlalchemy.engine": {
                "handlers": ["console"],
                "level": "INFO" if settings.debug else "WARNING",
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)
