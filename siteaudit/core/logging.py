import logging
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s"

NOISY_LOGGERS = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "sqlalchemy.engine": "WARNING",
}


def configure_logging(level: str = "INFO", silenced_loggers: dict[str, str] | None = None) -> None:
    """
    Configure the root logger with a single stream handler.

    Safe to call more than once (API lifespan and Celery worker both call it);
    existing root handlers are replaced.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name, name_level in (silenced_loggers or NOISY_LOGGERS).items():
        logging.getLogger(name).setLevel(getattr(logging, name_level.upper(), logging.WARNING))
