"""Byte link over a serial port, plus port discovery.

A byte link is the duplex stream the session talks through: write-all,
read-one-byte-or-timeout, close.  ``SerialLink`` implements it on top of
pyserial with a *blocking* read timeout, so a single ``read_one_byte()``
call waits at most ``read_timeout`` seconds for the next byte.

Cross-platform: works on both Windows (COMx) and Linux
(/dev/ttyUSB*, /dev/ttyS*, /dev/ttyACM*).

Default line settings: 9600 8N1 (no flow control).
"""

from __future__ import annotations

import abc
import dataclasses
import enum
import logging
import platform
from typing import List, Optional

import serial
import serial.tools.list_ports

from . import (
    SERIAL_BAUD_RATE,
    SERIAL_BYTESIZE,
    SERIAL_PARITY,
    SERIAL_STOPBITS,
    SERIAL_READ_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
)
from .exceptions import (
    InvalidSettingError,
    LinkOpenError,
    LinkReadError,
    LinkWriteError,
)
from .types import CandidateList

logger = logging.getLogger("serial_line_terminal.link")

_IS_WINDOWS = platform.system() == "Windows"

# pyserial on POSIX lets termios.error escape from tcdrain/tcsetattr; it is
# neither an OSError nor a SerialException.
if _IS_WINDOWS:
    _TERMIOS_ERRORS = ()
else:
    import termios
    _TERMIOS_ERRORS = (termios.error,)

# Map string parity values to pyserial constants
_PARITY_MAP = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
    "M": serial.PARITY_MARK,
    "S": serial.PARITY_SPACE,
}

# Map integer stopbits to pyserial constants
_STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

# Map integer bytesize to pyserial constants
_BYTESIZE_MAP = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


# ---------------------------------------------------------------------------
# Read outcome
# ---------------------------------------------------------------------------


class ReadStatus(enum.Enum):
    BYTE = "byte"
    END_OF_STREAM = "end_of_stream"
    TIMED_OUT = "timed_out"


@dataclasses.dataclass(frozen=True)
class ReadOutcome:
    """Result of one ``read_one_byte()`` call.

    Attributes:
        status: What happened.
        value: The received byte (0-255) when ``status`` is ``BYTE``,
            otherwise ``None``.
    """
    status: ReadStatus
    value: Optional[int] = None

    @classmethod
    def byte(cls, value: int) -> ReadOutcome:
        return cls(ReadStatus.BYTE, value)

    @classmethod
    def end_of_stream(cls) -> ReadOutcome:
        return cls(ReadStatus.END_OF_STREAM)

    @classmethod
    def timed_out(cls) -> ReadOutcome:
        return cls(ReadStatus.TIMED_OUT)


# ---------------------------------------------------------------------------
# Link interface
# ---------------------------------------------------------------------------


class ByteLink(abc.ABC):
    """Duplex byte stream with a bounded read.

    Implementations must convert their own I/O failures into
    ``LinkWriteError`` / ``LinkReadError`` and must never raise from
    ``close()``.
    """

    port: str

    @abc.abstractmethod
    def is_open(self) -> bool:
        """Return ``True`` while the link can be written to and read from."""

    @abc.abstractmethod
    def write_all(self, data: bytes) -> int:
        """Write every byte of *data* or raise ``LinkWriteError``."""

    @abc.abstractmethod
    def read_one_byte(self) -> ReadOutcome:
        """Read a single byte, waiting at most the link's read timeout."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the underlying resource.  Idempotent."""


# ---------------------------------------------------------------------------
# pyserial implementation
# ---------------------------------------------------------------------------


class SerialLink(ByteLink):
    """Byte link backed by a ``serial.Serial`` port.

    Follows the context-manager pattern so the port is released on every
    exit path.

    Example::

        with SerialLink("/dev/ttyUSB0") as link:
            link.write_all(b"*IDN?\\r\\n")
            outcome = link.read_one_byte()
    """

    def __init__(
        self,
        port: str,
        baud_rate: int = SERIAL_BAUD_RATE,
        bytesize: int = SERIAL_BYTESIZE,
        parity: str = SERIAL_PARITY,
        stopbits: int = SERIAL_STOPBITS,
        read_timeout: float = SERIAL_READ_TIMEOUT,
        write_timeout: Optional[float] = SERIAL_WRITE_TIMEOUT,
    ) -> None:
        """Initialize a serial link.  The port is **not** opened here.

        Args:
            port: Serial port path — e.g. ``/dev/ttyUSB0`` (Linux) or ``COM3`` (Windows).
            baud_rate: Baud rate (default: 9600).
            bytesize: Number of data bits (5, 6, 7, or 8; default: 8).
            parity: Parity setting — ``"N"`` (none), ``"E"`` (even), ``"O"`` (odd),
                    ``"M"`` (mark), ``"S"`` (space).  Default: ``"N"``.
            stopbits: Number of stop bits (1 or 2; default: 1).
            read_timeout: Upper bound in seconds for a single-byte read.
                          Default: 2.0.
            write_timeout: Write timeout in seconds.  Default: 2.0.  ``None``
                          means block forever.

        Raises:
            InvalidSettingError: If any parameter value is invalid.
        """
        self.port = port
        self.baud_rate = baud_rate
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self._serial: Optional[serial.Serial] = None

        # ---- Validate and resolve bytesize ----
        if bytesize not in _BYTESIZE_MAP:
            valid = ", ".join(str(k) for k in sorted(_BYTESIZE_MAP))
            raise InvalidSettingError(
                f"Invalid bytesize {bytesize!r} for port {port}. "
                f"Must be one of: {valid}. "
                f"Standard UART uses 8 data bits (bytesize=8)."
            )
        self.bytesize = _BYTESIZE_MAP[bytesize]

        # ---- Validate and resolve parity ----
        parity_upper = parity.upper()
        if parity_upper not in _PARITY_MAP:
            valid = ", ".join(f'"{k}"' for k in sorted(_PARITY_MAP))
            raise InvalidSettingError(
                f"Invalid parity {parity!r} for port {port}. "
                f"Must be one of: {valid}. "
                f'Standard UART uses no parity (parity="N").'
            )
        self.parity = _PARITY_MAP[parity_upper]

        # ---- Validate and resolve stopbits ----
        if stopbits not in _STOPBITS_MAP:
            valid = ", ".join(str(k) for k in sorted(_STOPBITS_MAP))
            raise InvalidSettingError(
                f"Invalid stopbits {stopbits!r} for port {port}. "
                f"Must be one of: {valid}. "
                f"Standard UART uses 1 stop bit (stopbits=1)."
            )
        self.stopbits = _STOPBITS_MAP[stopbits]

        # ---- Validate baud rate ----
        if baud_rate <= 0:
            raise InvalidSettingError(
                f"Invalid baud rate {baud_rate!r} for port {port}. "
                f"Baud rate must be a positive integer. "
                f"Common values: 9600, 19200, 38400, 57600, 115200."
            )

        # ---- Validate timeouts ----
        if read_timeout < 0:
            raise InvalidSettingError(
                f"Invalid read_timeout {read_timeout!r} for port {port}. "
                f"Must be a non-negative number of seconds."
            )
        if write_timeout is not None and write_timeout < 0:
            raise InvalidSettingError(
                f"Invalid write_timeout {write_timeout!r} for port {port}. "
                f"Must be None (blocking), 0 (non-blocking), or a positive number."
            )

        logger.debug(
            "[LINK-INIT] Configured %s — %d %d%s%s (read_timeout=%.2fs, write_timeout=%s)",
            port, baud_rate, bytesize, parity_upper, stopbits, read_timeout,
            f"{write_timeout:.2f}s" if write_timeout is not None else "None (blocking)",
        )

    @classmethod
    def open_link(
        cls,
        port: str,
        baud_rate: int = SERIAL_BAUD_RATE,
        read_timeout: float = SERIAL_READ_TIMEOUT,
    ) -> SerialLink:
        """Construct and open a link in one step.

        This is the session's default link factory.

        Raises:
            InvalidSettingError: If the settings are invalid.
            LinkOpenError: If the port cannot be opened.  Nothing stays open.
        """
        link = cls(port, baud_rate=baud_rate, read_timeout=read_timeout)
        try:
            link.open(context=f"Connecting to {port}")
        except LinkOpenError:
            link.close()
            raise
        return link

    def open(self, context: str) -> None:
        """Open the serial port.

        Args:
            context: Description of the purpose, embedded into error messages.

        Raises:
            LinkOpenError: If the port cannot be opened.  The error message
                includes the OS-level reason, the port path, and
                platform-specific troubleshooting hints; ``cause`` holds the
                OS-level reason alone.
        """
        if self.is_open():
            logger.debug("[LINK-OPEN] [%s] Port %s is already open — skipping", context, self.port)
            return

        logger.info(
            "[LINK-OPEN] [%s] Opening %s at %d baud ...", context, self.port, self.baud_rate,
        )

        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baud_rate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=self.read_timeout,
                write_timeout=self.write_timeout,
            )
        except serial.SerialException as exc:
            msg = (
                f"[{context}] Failed to open serial port {self.port} at {self.baud_rate} baud: {exc}. "
                f"{self._platform_hint()}"
            )
            logger.error("[LINK-OPEN] FAILED — %s", msg)
            raise LinkOpenError(msg, port=self.port, cause=str(exc)) from exc
        except OSError as exc:
            msg = (
                f"[{context}] OS error opening serial port {self.port}: {exc}. "
                f"{self._platform_hint()}"
            )
            logger.error("[LINK-OPEN] OS ERROR — %s", msg)
            raise LinkOpenError(msg, port=self.port, cause=str(exc)) from exc
        except _TERMIOS_ERRORS as exc:
            msg = (
                f"[{context}] Failed to configure serial port {self.port}: {exc}. "
                f"{self._platform_hint()}"
            )
            logger.error("[LINK-OPEN] TERMIOS ERROR — %s", msg)
            raise LinkOpenError(msg, port=self.port, cause=str(exc)) from exc

        logger.info("[LINK-OPEN] [%s] Successfully opened %s", context, self.port)

    def is_open(self) -> bool:
        """Check whether the serial port is currently open."""
        return self._serial is not None and self._serial.is_open

    def close(self) -> None:
        """Close the serial port if open."""
        was_open = self.is_open()

        if self._serial is not None:
            try:
                self._serial.close()
            except Exception as exc:
                logger.warning(
                    "[LINK-CLOSE] Error closing port %s: %s", self.port, exc,
                )
            finally:
                self._serial = None

        if was_open:
            logger.info("[LINK-CLOSE] Closed %s", self.port)
        else:
            logger.debug(
                "[LINK-CLOSE] close() called on already-closed port %s", self.port,
            )

    def get_serial(self) -> serial.Serial:
        """Return the underlying ``serial.Serial`` object.

        Raises:
            LinkOpenError: If the port is not open.
        """
        if self._serial is None or not self._serial.is_open:
            raise LinkOpenError(
                f"Cannot access serial port {self.port}: port is not open. "
                f"Call open() or use the context manager first.",
                port=self.port,
                cause="port is not open",
            )
        return self._serial

    def write_all(self, data: bytes) -> int:
        """Write *all* bytes to the serial port and flush the OS transmit buffer.

        With a blocking ``write_timeout`` pyserial loops internally (POSIX)
        or blocks on ``GetOverlappedResult`` (Windows) until every byte has
        been accepted by the driver.  A short write is still checked for and
        reported.

        Returns:
            Number of bytes written (always ``len(data)`` on success).

        Raises:
            LinkWriteError: On a short write, a write timeout, or any
                pyserial / OS failure.
        """
        if not self.is_open():
            raise LinkWriteError(
                f"Cannot write to serial port {self.port}: port is not open.",
                port=self.port,
                cause="port is not open",
            )
        ser = self._serial

        try:
            n = ser.write(data)
            if n is not None and n != len(data):
                msg = (
                    f"Short write on {self.port}: wrote {n}/{len(data)} bytes. "
                    f"The driver did not accept every byte before write_timeout "
                    f"({self.write_timeout}s) expired."
                )
                logger.error("[LINK-WRITE] %s", msg)
                raise LinkWriteError(
                    msg, port=self.port, cause=f"short write ({n}/{len(data)} bytes)",
                )
            ser.flush()
        except serial.SerialTimeoutException as exc:
            msg = (
                f"Write timeout on {self.port} after {self.write_timeout}s: {exc}. "
                f"Check hardware flow control and that the device is powered."
            )
            logger.error("[LINK-WRITE] TIMEOUT — %s", msg)
            raise LinkWriteError(msg, port=self.port, cause=str(exc)) from exc
        except serial.SerialException as exc:
            msg = (
                f"Serial write error on {self.port}: {exc}. "
                f"The port may have been disconnected or the USB cable unplugged."
            )
            logger.error("[LINK-WRITE] ERROR — %s", msg)
            raise LinkWriteError(msg, port=self.port, cause=str(exc)) from exc
        except OSError as exc:
            msg = (
                f"OS error writing to {self.port}: {exc}. "
                f"The device may have been physically removed."
            )
            logger.error("[LINK-WRITE] OS ERROR — %s", msg)
            raise LinkWriteError(msg, port=self.port, cause=str(exc)) from exc
        except _TERMIOS_ERRORS as exc:
            msg = (
                f"Failed to drain transmit buffer on {self.port}: {exc}. "
                f"The device may have been physically removed."
            )
            logger.error("[LINK-WRITE] TERMIOS ERROR — %s", msg)
            raise LinkWriteError(msg, port=self.port, cause=str(exc)) from exc

        logger.debug("[LINK-WRITE] Wrote %d bytes to %s", len(data), self.port)
        return len(data)

    def read_one_byte(self) -> ReadOutcome:
        """Read one byte, blocking up to ``read_timeout`` seconds.

        pyserial returns an empty result when the timeout expires, so an
        empty read is reported as ``TIMED_OUT``.

        Raises:
            LinkReadError: If the port is not open or the read fails.
        """
        if not self.is_open():
            raise LinkReadError(
                f"Cannot read from serial port {self.port}: port is not open.",
                port=self.port,
                cause="port is not open",
            )

        try:
            chunk = self._serial.read(1)
        except serial.SerialException as exc:
            msg = (
                f"Serial read error on {self.port}: {exc}. "
                f"The device may have been disconnected during the read."
            )
            logger.error("[LINK-READ] ERROR — %s", msg)
            raise LinkReadError(msg, port=self.port, cause=str(exc)) from exc
        except OSError as exc:
            msg = (
                f"OS error reading from {self.port}: {exc}. "
                f"The device may have been physically removed."
            )
            logger.error("[LINK-READ] OS ERROR — %s", msg)
            raise LinkReadError(msg, port=self.port, cause=str(exc)) from exc

        if not chunk:
            return ReadOutcome.timed_out()
        return ReadOutcome.byte(chunk[0])

    # ---- Context manager ----

    def __enter__(self) -> SerialLink:
        """Context manager entry — opens the serial port."""
        self.open(context=f"Opening {self.port}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Context manager exit — ensures the port is closed."""
        self.close()

    def __del__(self) -> None:
        """Destructor — ensures the port is closed."""
        try:
            self.close()
        except Exception:
            pass

    # ---- Helpers ----

    def _platform_hint(self) -> str:
        """Return a platform-specific troubleshooting hint."""
        available = ", ".join(list_candidates()) or "none"
        if _IS_WINDOWS:
            return (
                "On Windows: verify the COM port number in Device Manager "
                "(Ports → COM & LPT). Ensure no other application (PuTTY, "
                "TeraTerm, Arduino IDE) has the port open. "
                f"Available ports: {available}."
            )
        return (
            "On Linux: verify the device path exists (ls /dev/ttyUSB* /dev/ttyACM* "
            "/dev/ttyS*). Ensure your user is in the 'dialout' group "
            "(sudo usermod -aG dialout $USER) and that no other process "
            "(minicom, screen, picocom) has the port open. "
            f"Available ports: {available}."
        )


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def list_candidates() -> CandidateList:
    """Return the serial port device names visible to the operating system.

    Discovery failures are logged and reported as "no candidates".
    """
    try:
        ports = serial.tools.list_ports.comports()
    except Exception as exc:
        logger.warning("[LINK-LIST] Port discovery failed: %s", exc)
        return []
    names = []
    for p in ports:
        names.append(p.device)
        logger.debug("[LINK-LIST] Found port: %s (%s)", p.device, p.description)
    return sorted(names)


def describe_candidates() -> List[str]:
    """Return ``"<device> — <description>"`` strings for display."""
    try:
        ports = serial.tools.list_ports.comports()
    except Exception as exc:
        logger.warning("[LINK-LIST] Port discovery failed: %s", exc)
        return []
    return [f"{p.device} — {p.description}" for p in sorted(ports, key=lambda p: p.device)]
