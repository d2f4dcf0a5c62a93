"""
Logging setup.

Configures the loguru logger and scrubs credentials out of request context
before it is written to the error log.
"""

import sys
from typing import Any

from loguru import logger

SENSITIVE_KEYS = frozenset({
    "password",
    "password_hash",
    "token",
    "verified_token",
    "otp",
    "cookie",
    "authorization",
    "x-session-token",
    "razorpay_signature",
})

REDACTED = "[redacted]"


def setup_logging(level: str = "INFO") -> None:
    """Replace the default sink with a stderr sink at the given level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        backtrace=False,
        diagnose=False,
    )


def redact(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item) for item in data]
    return data
