import os
import sys

from loguru import logger

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "{time} | {level} | {extra[log_type]} | {message}"

os.makedirs(LOG_DIR, exist_ok=True)

# Remove default handler
logger.remove()
logger.configure(extra={"log_type": "app"})

# file name -> (log types routed there, retention)
CHANNELS = {
    "bookings.log": (("booking",), "4 weeks"),
    "payments.log": (("payment", "refund"), "8 weeks"),
    "admin.log": (("admin",), "4 weeks"),
    "sweeper.log": (("sweeper",), "4 weeks"),
}


def _only(log_types):
    return lambda record: record["extra"].get("log_type") in log_types


# Everything goes to the general log and the console
logger.add(sys.stderr, level=LOG_LEVEL, format=LOG_FORMAT)
logger.add(
    f"{LOG_DIR}/app.log",
    rotation="1 week",
    retention="4 weeks",
    level=LOG_LEVEL,
    enqueue=True,
    format=LOG_FORMAT,
)

for filename, (log_types, retention) in CHANNELS.items():
    logger.add(
        f"{LOG_DIR}/{filename}",
        rotation="1 week",
        retention=retention,
        level=LOG_LEVEL,
        enqueue=True,
        filter=_only(log_types),
        format=LOG_FORMAT,
    )

# Errors from every channel, with tracebacks
logger.add(
    f"{LOG_DIR}/errors.log",
    rotation="1 week",
    retention="8 weeks",
    level="ERROR",
    enqueue=True,
    backtrace=True,
)


def get_logger(log_type: str | None = None):
    """Logger bound to a channel; ``None`` logs to the general files only."""
    if log_type:
        return logger.bind(log_type=log_type)
    return logger
