# packet_sniffer/errors.py
# Error hierarchy for the agent plus the fail-fast exit used from capture threads.
import os
from typing import Optional

from loguru import logger


class PacketSnifferError(Exception):
    """Base exception for all agent errors."""

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigError(PacketSnifferError):
    """Missing or invalid configuration value."""


class UnsupportedPlatformError(PacketSnifferError):
    """The host OS has no usable capture provider."""


class InterfaceNotFound(PacketSnifferError):
    """No capturable interface matches the requested adapter prefix."""


class CaptureError(PacketSnifferError):
    """A capture session failed to open or died while running."""


class SinkConnectionError(PacketSnifferError):
    """The stream store could not be reached."""


class SinkAppendError(PacketSnifferError):
    """Appending a batch to the stream store failed."""


def fail_fast(message: str, *args, exit_code: int = 1) -> None:
    """
    Log at CRITICAL and terminate the whole process.

    Flushes run on whatever thread the capture provider calls back on, where
    raising SystemExit would only end that thread, so this goes through os._exit.
    """
    logger.critical(message, *args)
    logger.complete()
    os._exit(exit_code)
