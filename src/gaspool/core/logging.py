"""Logging setup for GasPool."""

import logging
import re
import sys

LOGGER_NAME = "gaspool"

# Bare 32-byte (EVM key) and 64-byte (SVM secret key) hex blobs.
# 0x-prefixed values are transaction hashes and pass through.
_KEY_PATTERN = re.compile(r"(?<![0-9a-fA-Fx])[0-9a-fA-F]{64}(?:[0-9a-fA-F]{64})?(?![0-9a-fA-F])")


class KeyRedactionFilter(logging.Filter):
    """Mask anything shaped like a raw private key before it reaches a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if _KEY_PATTERN.search(message):
            record.msg = _KEY_PATTERN.sub(_mask, message)
            record.args = None
        return True


def _mask(match: re.Match[str]) -> str:
    value = match.group(0)
    return f"{value[:6]}…{value[-4:]}"


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> logging.Logger:
    """
    Configure the GasPool logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Whether to emit JSON logs (good for Datadog/Splunk)

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(KeyRedactionFilter())

    if json_format:
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Embedding services usually own the root logger
    logger.propagate = False

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger of gaspool."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
