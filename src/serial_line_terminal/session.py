"""Session engine: connection lifecycle and the command/response exchange.

A ``Session`` owns at most one byte link.  While connected, every
submitted command is written followed by the selected line terminator,
and a single response line is read back one byte at a time until a
newline, end of stream, or the link's read timeout.  Each step leaves a
line in the bounded output history for the front-end to render.

The session never raises for I/O failures:

- a failed ``connect`` is reported through ``last_error``;
- a failed write or read inside ``submit`` becomes a history line and the
  link is kept for the next command.

Everything is synchronous.  ``submit`` blocks for up to the link's read
timeout when the device stays silent; callers must not start a second
``submit`` before the first returns.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Callable, Optional

from typeguard import typechecked

from . import (
    HISTORY_CAPACITY,
    SERIAL_BAUD_RATE,
    SERIAL_READ_TIMEOUT,
    SERIAL_RESPONSE_TERMINATOR,
)
from .exceptions import LinkOpenError, LinkReadError, LinkWriteError
from .history import OutputHistory
from .link import ByteLink, ReadStatus, SerialLink, list_candidates
from .terminator import LineTerminator
from .types import CandidateList, DiscoverFunc, HistoryLines

logger = logging.getLogger("serial_line_terminal.session")

_NEWLINE_BYTE = SERIAL_RESPONSE_TERMINATOR[0]

# (port, baud_rate, read_timeout) -> open link, or raise LinkOpenError
LinkFactory = Callable[..., ByteLink]


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclasses.dataclass(frozen=True)
class SessionStatus:
    """Snapshot of the connection state.

    Attributes:
        state: ``CONNECTED`` or ``DISCONNECTED``.
        port: The connected port identifier, ``None`` when disconnected.
    """
    state: SessionState
    port: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED


@typechecked
class Session:
    """Interactive command/response session over one serial link.

    Example::

        with Session() as session:
            if session.connect("/dev/ttyUSB0"):
                session.submit("*IDN?")
            for line in session.history_snapshot():
                print(line)
    """

    def __init__(
        self,
        link_factory: Optional[LinkFactory] = None,
        discover: Optional[DiscoverFunc] = None,
        terminator: LineTerminator = LineTerminator.CRLF,
        history_capacity: int = HISTORY_CAPACITY,
    ) -> None:
        """Initialize a disconnected session.

        Args:
            link_factory: Called as ``link_factory(port, baud_rate,
                read_timeout)`` to open a link.  Default:
                ``SerialLink.open_link``.
            discover: Returns the available port identifiers.  Default:
                pyserial port enumeration.
            terminator: Initial line terminator policy.
            history_capacity: Maximum number of retained history lines.
        """
        self._link_factory = link_factory if link_factory is not None else SerialLink.open_link
        self._discover = discover if discover is not None else list_candidates
        self._terminator = terminator
        self._history = OutputHistory(history_capacity)
        self._link = None  # Optional[ByteLink]; set iff connected
        self._port = None  # Optional[str]
        self._last_error = None  # Optional[str]
        self._candidates = []  # CandidateList
        self.refresh_candidates()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def current_state(self) -> SessionStatus:
        if self._link is None:
            return SessionStatus(SessionState.DISCONNECTED)
        return SessionStatus(SessionState.CONNECTED, self._port)

    def is_connected(self) -> bool:
        return self._link is not None

    @property
    def last_error(self) -> Optional[str]:
        """Diagnostic from the most recent failed ``connect``, else ``None``."""
        return self._last_error

    @property
    def terminator(self) -> LineTerminator:
        return self._terminator

    def set_terminator(self, terminator: LineTerminator) -> None:
        """Select the line terminator.  Allowed in any state."""
        if terminator is not self._terminator:
            logger.info(
                "[SESSION-TERMINATOR] %s -> %s", self._terminator.label, terminator.label,
            )
        self._terminator = terminator

    @property
    def history(self) -> OutputHistory:
        return self._history

    def history_snapshot(self) -> HistoryLines:
        return self._history.snapshot()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def refresh_candidates(self) -> CandidateList:
        """Re-run port discovery.  A failing discovery yields no candidates."""
        try:
            candidates = list(self._discover())
        except Exception as exc:
            logger.warning("[SESSION-DISCOVER] Port discovery failed: %s", exc)
            candidates = []
        self._candidates = candidates
        logger.debug("[SESSION-DISCOVER] %d candidate port(s): %s", len(candidates), candidates)
        return list(candidates)

    def list_candidates(self) -> CandidateList:
        """Return the port identifiers from the most recent discovery."""
        return list(self._candidates)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, port: str) -> bool:
        """Open a link to *port* at 9600 baud with a 2 s read timeout.

        Ignored (returns ``False``) when already connected.

        Returns:
            ``True`` if this call established the connection.  On failure
            the session stays disconnected and ``last_error`` holds the
            reason.
        """
        if self._link is not None:
            logger.debug(
                "[SESSION-CONNECT] Already connected to %s — ignoring connect(%r)",
                self._port, port,
            )
            return False

        logger.info("[SESSION-CONNECT] Connecting to %s ...", port)
        try:
            link = self._link_factory(port, SERIAL_BAUD_RATE, SERIAL_READ_TIMEOUT)
        except LinkOpenError as exc:
            self._last_error = f"Failed to open port: {exc.cause}"
            logger.warning("[SESSION-CONNECT] %s (%s)", self._last_error, port)
            return False

        self._link = link
        self._port = port
        self._last_error = None
        logger.info("[SESSION-CONNECT] Connected to %s", port)
        return True

    def disconnect(self) -> None:
        """Close the link and return to the disconnected state.

        A no-op when already disconnected.  History is kept.
        """
        if self._link is None:
            logger.debug("[SESSION-DISCONNECT] Not connected — nothing to do")
            return

        link, port = self._link, self._port
        self._link = None
        self._port = None
        try:
            link.close()
        except Exception as exc:
            logger.warning("[SESSION-DISCONNECT] Error closing %s: %s", port, exc)
        logger.info("[SESSION-DISCONNECT] Disconnected from %s", port)
        self.refresh_candidates()

    def close(self) -> None:
        """Release the link, if any.  Safe to call repeatedly."""
        self.disconnect()

    def __enter__(self) -> Session:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    def submit(self, raw_command: str) -> None:
        """Send one command and collect at most one response line.

        Steps:

        1. Strip trailing whitespace; an empty command does nothing.
        2. Ignore the call when disconnected.
        3. Write the command bytes, then the terminator bytes.  A failure
           records ``Error sending: ...`` (or ``Error sending newline:
           ...``) and stops; the link stays connected.
        4. Record ``> <command>``.
        5. Read byte by byte until ``\\n``, end of stream, or timeout.  A
           read failure records ``Read error: ...`` and stops.
        6. Record ``< <response>`` unless the response is blank.

        Commands are encoded as UTF-8 with ``surrogateescape``; a command
        that still cannot be encoded records ``Error sending: ...``.  Each
        response byte becomes one character (Latin-1); multi-byte encodings
        from the device are not reassembled.
        """
        command = raw_command.rstrip()
        if not command:
            return

        link = self._link
        if link is None:
            logger.debug("[SESSION-SUBMIT] Not connected — ignoring %r", command)
            return

        # surrogateescape restores undecodable bytes read from the terminal
        try:
            payload = command.encode("utf-8", errors="surrogateescape")
        except UnicodeEncodeError as exc:
            logger.warning("[SESSION-SUBMIT] Cannot encode %r: %s", command, exc)
            self._history.append(f"Error sending: {exc}")
            return

        try:
            link.write_all(payload)
        except LinkWriteError as exc:
            logger.warning("[SESSION-SUBMIT] Write to %s failed: %s", self._port, exc)
            self._history.append(f"Error sending: {exc.cause}")
            return

        terminator_bytes = self._terminator.as_bytes()
        if terminator_bytes:
            try:
                link.write_all(terminator_bytes)
            except LinkWriteError as exc:
                logger.warning(
                    "[SESSION-SUBMIT] Terminator write to %s failed: %s", self._port, exc,
                )
                self._history.append(f"Error sending newline: {exc.cause}")
                return

        self._history.append(f"> {command}")
        logger.debug(
            "[SESSION-SUBMIT] Sent %r + %s to %s", command, self._terminator.label, self._port,
        )

        response = []
        while True:
            try:
                outcome = link.read_one_byte()
            except LinkReadError as exc:
                logger.warning("[SESSION-SUBMIT] Read from %s failed: %s", self._port, exc)
                self._history.append(f"Read error: {exc.cause}")
                return

            if outcome.status is ReadStatus.BYTE:
                if outcome.value == _NEWLINE_BYTE:
                    break
                response.append(chr(outcome.value))
            elif outcome.status is ReadStatus.END_OF_STREAM:
                logger.debug("[SESSION-SUBMIT] End of stream on %s", self._port)
                break
            else:
                logger.debug(
                    "[SESSION-SUBMIT] Read timeout on %s after %d byte(s)",
                    self._port, len(response),
                )
                break

        text = "".join(response).rstrip()
        if text:
            self._history.append(f"< {text}")
        logger.info(
            "[SESSION-SUBMIT] %r -> %r on %s", command, text, self._port,
        )
