# probe_monitor/logging.py
import logging
import sys

from .config import AppSettings

logger = logging.getLogger(__name__)


def _level(name: str) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


def setup_logging(settings: AppSettings) -> None:
    """Configures logging from the settings, or forces DEBUG in debug mode."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            stream=sys.stdout,
        )
        # aiomqtt is very chatty at DEBUG
        logging.getLogger("aiomqtt").setLevel(logging.INFO)
        logger.info("Debug mode enabled. Root logger set to DEBUG, aiomqtt to INFO.")
        return

    log_settings = settings.logging
    logging.basicConfig(
        level=_level(log_settings.level),
        format=log_settings.format,
        stream=sys.stdout,
    )
    for logger_name, logger_level in log_settings.loggers.items():
        logging.getLogger(logger_name).setLevel(_level(logger_level))

    logger.info(f"Logging configured with level {log_settings.level}")
