"""
Exception hierarchy for DCExport.

Asset failures are not exceptions: they resolve to a FAILED outcome.
Cancellation is plain ``asyncio.CancelledError`` and is never wrapped.
"""

from typing import Optional


class DCExportError(Exception):
    """Base class for all DCExport errors."""


class ConfigError(DCExportError):
    """Invalid or inconsistent configuration."""


class ExportError(DCExportError):
    """
    An export failed.

    Non-fatal errors are recorded against a single batch item; fatal ones
    abort the whole batch.
    """

    def __init__(self, message: str, fatal: bool = False):
        super().__init__(message)
        self.message = message
        self.fatal = fatal


class ChannelEmptyError(ExportError):
    """The channel has no messages in the requested range."""

    def __init__(self, message: str = "Channel is empty or contains no messages for the specified period."):
        super().__init__(message, fatal=False)


class TransferError(DCExportError):
    """A remote resource could not be fetched after all retries."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status
