import os
import logging

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "redis")


def get_log_level() -> str:
    """LOG_LEVEL from the environment; unknown names fall back to INFO."""
    requested = os.getenv("LOG_LEVEL", "INFO").upper()
    return requested if requested in VALID_LEVELS else "INFO"


def get_uvicorn_log_level() -> str:
    return get_log_level().lower()


def setup_logging() -> None:
    """Configure root logging for the gateway API and the stream consumer."""
    level_name = get_log_level()
    level = getattr(logging, level_name)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(level)

    if level_name != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Gateway logging at {level_name}")
