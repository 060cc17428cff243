import logging

from constants import LOG_LEVEL

_configured = False


def configure_logging(level: str = LOG_LEVEL) -> None:
    """
    Configure application logging from the LOG_LEVEL environment variable.

    Safe to call more than once; only the first call installs handlers.
    """
    global _configured
    if _configured:
        return

    log_level_value = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level_value,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Azure SDK request logging is very chatty at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True
    logging.getLogger(__name__).info(f"Logging configured with level: {level}")

