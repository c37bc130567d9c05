import os
import sys

from loguru import logger

from playlink.settings import LOG_DIR, LOG_LEVEL

_FORMAT = "{time} | {level} | {message}"


def setup_logging() -> None:
    """Console plus rotating files; booking and payment records also get their own file."""
    os.makedirs(LOG_DIR, exist_ok=True)

    logger.remove()
    logger.add(sys.stderr, level=LOG_LEVEL)

    logger.add(
        f"{LOG_DIR}/app.log",
        rotation="1 week",
        retention="4 weeks",
        level=LOG_LEVEL,
        enqueue=True,
        format=_FORMAT,
    )

    for log_type, filename in (("booking", "bookings.log"), ("payment", "payments.log")):
        logger.add(
            f"{LOG_DIR}/{filename}",
            rotation="1 week",
            retention="4 weeks",
            level="INFO",
            enqueue=True,
            filter=lambda record, t=log_type: record["extra"].get("log_type") == t,
            format=_FORMAT,
        )

    logger.add(
        f"{LOG_DIR}/errors.log",
        rotation="1 week",
        retention="8 weeks",
        level="ERROR",
        enqueue=True,
    )
