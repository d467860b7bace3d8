import sys
from logging.config import dictConfig

APP_LOGGERS = ("app", "app.api", "app.generation_logic", "app.services")


def build_logging_config(app_level: str = "DEBUG") -> dict:
    """Return a uvicorn-compatible dictConfig with *app_level* applied to the app loggers."""
    app_loggers = {name: {"handlers": ["app"], "level": app_level, "propagate": False} for name in APP_LOGGERS}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(asctime)s [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(levelprefix)s %(asctime)s [%(name)s] "%(request_line)s" %(status_code)s',
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stderr,
                "level": "INFO",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": sys.stdout,
                "level": "INFO",
            },
            # Streaming generation logs a line per section and per failure; keep them on stdout
            "app": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stdout,
                "level": "DEBUG",
            },
        },
        "loggers": {
            "root": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
            # httpx logs every request line at INFO, one per section generation
            "httpx": {"handlers": ["default"], "level": "WARNING", "propagate": False},
            **app_loggers,
        },
    }


def setup_logging(app_level: str = "DEBUG") -> None:
    """Configures application-wide logging using dictConfig."""
    dictConfig(build_logging_config(app_level))
