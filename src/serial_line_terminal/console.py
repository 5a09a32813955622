"""Interactive line-based console that drives a ``Session``.

The console mirrors the two views of a serial terminal window:

- **disconnected** — a numbered list of candidate ports, refresh, open,
  and the last connection error;
- **connected** — the active port, close, and a command prompt whose
  results are printed from the session's output history.

Lines starting with ``/`` are console commands; everything else is sent
to the device.  Use ``//`` to send a line that itself begins with ``/``.
"""

from __future__ import annotations

import logging
import sys
from typing import Callable, List, Optional, TextIO

from typeguard import typechecked

from .exceptions import InvalidSettingError
from .session import Session
from .terminator import LineTerminator

logger = logging.getLogger("serial_line_terminal.console")

HELP_TEXT = """\
Console commands:
  /ports              list candidate ports
  /refresh            re-scan serial ports
  /open <n|port>      connect to port number n (from /ports) or a port name
  /close              disconnect
  /newline <mode>     line terminator: None, CR, LF, CRLF
  /history            reprint the output history
  /status             show connection state and terminator
  /help               show this help
  /quit               leave the console
Any other line is sent to the device (prefix with // to send a leading /)."""


@typechecked
class InteractiveConsole:
    """Read-eval-print loop around one ``Session``.

    Example::

        with Session() as session:
            InteractiveConsole(session).run()
    """

    def __init__(
        self,
        session: Session,
        input_func: Optional[Callable[[str], str]] = None,
        output: Optional[TextIO] = None,
    ) -> None:
        """Initialize the console.

        Args:
            session: The session to drive.  The console closes it on exit.
            input_func: Prompt-and-read function.  Default: ``input``.
            output: Stream for all console output.  Default: ``sys.stdout``.
        """
        self.session = session
        self._input = input_func if input_func is not None else input
        self._out = output if output is not None else sys.stdout
        self._rendered = session.history.appended_count
        self._running = False

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    def _print(self, text: str = "") -> None:
        print(text, file=self._out, flush=True)

    def _prompt(self) -> str:
        status = self.session.current_state()
        if status.is_connected:
            return f"{status.port}> "
        return "serial> "

    def render_new_lines(self) -> List[str]:
        """Print the history lines appended since the last render."""
        history = self.session.history
        new_count = history.appended_count - self._rendered
        self._rendered = history.appended_count
        if new_count <= 0:
            return []
        lines = list(history.snapshot()[-new_count:])
        for line in lines:
            self._print(line)
        return lines

    def show_ports(self) -> None:
        candidates = self.session.list_candidates()
        if not candidates:
            self._print("No serial ports found.")
            return
        self._print("Available serial ports:")
        for index, name in enumerate(candidates):
            self._print(f"  [{index}] {name}")

    def show_status(self) -> None:
        status = self.session.current_state()
        if status.is_connected:
            self._print(f"Connected: {status.port}")
        else:
            self._print("Disconnected")
        self._print(f"Line terminator: {self.session.terminator.label}")
        if self.session.last_error:
            self._print(f"Error: {self.session.last_error}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def open_port(self, target: str) -> bool:
        """Connect to a port given by list index or by name."""
        if self.session.is_connected():
            self._print(f"Already connected to {self.session.current_state().port}. Use /close first.")
            return False

        port = target
        if target.isdigit():
            candidates = self.session.list_candidates()
            index = int(target)
            if index >= len(candidates):
                self._print(f"No port number {index}. Use /ports to list ports.")
                return False
            port = candidates[index]

        if self.session.connect(port):
            self._print(f"Connected: {port}")
            return True
        self._print(f"Error: {self.session.last_error}")
        return False

    def handle_line(self, line: str) -> bool:
        """Process one input line.  Returns ``False`` to leave the loop."""
        if line.startswith("//"):
            return self._send(line[1:])
        if not line.startswith("/"):
            return self._send(line)

        parts = line[1:].split(None, 1)
        if not parts:
            self._print(HELP_TEXT)
            return True
        name = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if name in ("quit", "exit"):
            return False
        if name == "help":
            self._print(HELP_TEXT)
        elif name == "ports":
            self.show_ports()
        elif name == "refresh":
            self.session.refresh_candidates()
            self.show_ports()
        elif name == "open":
            if not arg:
                self._print("Usage: /open <n|port>")
            else:
                self.open_port(arg)
        elif name == "close":
            if self.session.is_connected():
                self.session.disconnect()
                self._print("Disconnected")
            else:
                self._print("Not connected.")
        elif name == "newline":
            self._set_newline(arg)
        elif name == "history":
            for entry in self.session.history_snapshot():
                self._print(entry)
        elif name == "status":
            self.show_status()
        else:
            self._print(f"Unknown command /{name}. Type /help for a list.")
        return True

    def _set_newline(self, label: str) -> None:
        if not label:
            self._print(f"Line terminator: {self.session.terminator.label}")
            return
        try:
            terminator = LineTerminator.from_label(label)
        except InvalidSettingError as exc:
            self._print(f"Error: {exc}")
            return
        self.session.set_terminator(terminator)
        self._print(f"Line terminator: {terminator.label}")

    def _send(self, text: str) -> bool:
        if not text.strip():
            return True
        if not self.session.is_connected():
            self._print("Not connected. Use /ports and /open <n|port> first.")
            return True
        self.session.submit(text)
        self.render_new_lines()
        return True

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> int:
        """Run until ``/quit``, end of input, or Ctrl-C.  Always closes the session."""
        self._running = True
        self._print("Serial line terminal. Type /help for commands.")
        self.show_status()
        if not self.session.is_connected():
            self.show_ports()
        try:
            while self._running:
                try:
                    line = self._input(self._prompt())
                except EOFError:
                    self._print()
                    break
                if not self.handle_line(line):
                    break
        except KeyboardInterrupt:
            self._print()
            logger.info("[CONSOLE] Interrupted")
        finally:
            self._running = False
            self.session.close()
        return 0
