"""Custom exceptions for serial link and session operations."""

from __future__ import annotations

from typing import Optional


class SerialTerminalError(Exception):
    """Common base exception for all serial_line_terminal errors."""
    pass


class InvalidSettingError(SerialTerminalError):
    """Exception for invalid line settings, capacities, or terminator labels."""
    pass


class LinkError(SerialTerminalError):
    """Base exception for byte link failures.

    Attributes:
        port: The port identifier the failure happened on, if known.
        cause: Short description of the underlying failure.  This is what
            the session shows to the user; the full message (with hints)
            goes to the log.
    """

    def __init__(
        self,
        message: str,
        *,
        port: Optional[str] = None,
        cause: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.port = port
        self.cause = cause if cause is not None else message


class LinkOpenError(LinkError):
    """Exception for ports that cannot be opened or configured."""
    pass


class LinkWriteError(LinkError):
    """Exception for short writes and write-side I/O failures."""
    pass


class LinkReadError(LinkError):
    """Exception for read-side I/O failures.

    A read timeout is **not** a ``LinkReadError``; it is reported as a
    normal ``ReadOutcome``.
    """
    pass
