"""
Session engine test suite.

Drives ``Session`` through a scriptable in-memory ``FakeLink`` so the
state machine and the exchange protocol are exercised without hardware.

Run with full visibility:
    pytest tests/test_session.py -v -s
"""

from __future__ import annotations

import pytest

# typeguard 4.x raises TypeCheckError (extends Exception, not TypeError).
# typeguard 2.x raises plain TypeError.  Accept either in enforcement tests.
try:
    from typeguard import TypeCheckError
    _TYPEGUARD_ERRORS = (TypeError, TypeCheckError)
except ImportError:
    _TYPEGUARD_ERRORS = (TypeError,)

from serial_line_terminal import (
    HISTORY_CAPACITY,
    SERIAL_BAUD_RATE,
    SERIAL_READ_TIMEOUT,
)
from serial_line_terminal.session import Session, SessionState, SessionStatus
from serial_line_terminal.terminator import LineTerminator

from fake_link import FakeLink, FakeLinkFactory


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _report(label, detail=""):
    # type: (str, str) -> None
    if detail:
        print("  [{}] {}".format(label, detail))
    else:
        print("  [{}]".format(label))


def _make_session(factory=None, candidates=("/dev/fake0", "/dev/fake1"), **kwargs):
    # type: (...) -> Session
    factory = factory if factory is not None else FakeLinkFactory()
    return Session(
        link_factory=factory,
        discover=lambda: list(candidates),
        **kwargs
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def echo_factory():
    """Factory whose links answer every command with ``OK\\n``."""
    return FakeLinkFactory(reply=b"OK\n")


@pytest.fixture()
def silent_factory():
    """Factory whose links never answer."""
    return FakeLinkFactory()


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Connection lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestConnectionLifecycle:
    """connect / disconnect state transitions."""

    def test_initial_state_is_disconnected(self):
        # type: () -> None
        session = _make_session()
        status = session.current_state()
        assert status == SessionStatus(SessionState.DISCONNECTED)
        assert status.port is None
        assert not status.is_connected
        assert session.last_error is None
        assert session.history_snapshot() == ()
        _report("PASS", "New session starts disconnected with empty history")

    def test_connect_uses_fixed_line_parameters(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        assert session.connect("/dev/fake0") is True
        assert echo_factory.calls == [("/dev/fake0", SERIAL_BAUD_RATE, SERIAL_READ_TIMEOUT)]
        assert SERIAL_BAUD_RATE == 9600
        assert SERIAL_READ_TIMEOUT == 2.0
        _report("PASS", "Link opened at 9600 baud with 2 s read timeout")

    def test_connect_success(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake1")
        status = session.current_state()
        assert status.state is SessionState.CONNECTED
        assert status.port == "/dev/fake1"
        assert session.is_connected()
        _report("PASS", "connect() -> CONNECTED with port name")

    def test_connect_failure_sets_last_error(self):
        # type: () -> None
        factory = FakeLinkFactory(unavailable=["/dev/missing"])
        session = _make_session(factory)
        assert session.connect("/dev/missing") is False
        assert session.current_state().state is SessionState.DISCONNECTED
        assert session.last_error == "Failed to open port: No such file or directory"
        assert factory.links == []
        _report("CAUGHT", session.last_error)
        _report("PASS", "Failed connect stays DISCONNECTED and records the reason")

    def test_successful_connect_clears_last_error(self):
        # type: () -> None
        factory = FakeLinkFactory(unavailable=["/dev/missing"])
        session = _make_session(factory)
        session.connect("/dev/missing")
        assert session.last_error is not None
        assert session.connect("/dev/fake0") is True
        assert session.last_error is None
        _report("PASS", "last_error cleared on the next successful connect")

    def test_failed_connect_is_not_retried(self):
        # type: () -> None
        factory = FakeLinkFactory(unavailable=["/dev/missing"])
        session = _make_session(factory)
        session.connect("/dev/missing")
        assert len(factory.calls) == 1
        _report("PASS", "Exactly one open attempt per connect()")

    def test_connect_while_connected_is_ignored(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        assert session.connect("/dev/fake1") is False
        assert len(echo_factory.links) == 1
        assert session.current_state().port == "/dev/fake0"
        assert not echo_factory.last.closed
        _report("PASS", "Second connect() is a no-op; only one link is ever held")

    def test_disconnect_closes_link(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        link = echo_factory.last
        session.disconnect()
        assert link.closed
        assert session.current_state() == SessionStatus(SessionState.DISCONNECTED)
        _report("PASS", "disconnect() closes the link and returns to DISCONNECTED")

    def test_disconnect_when_disconnected_is_noop(self):
        # type: () -> None
        session = _make_session()
        session.disconnect()
        session.disconnect()
        assert session.current_state().state is SessionState.DISCONNECTED
        _report("PASS", "disconnect() is idempotent")

    def test_disconnect_then_reconnect_keeps_history(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit("STATUS")
        before = session.history_snapshot()

        session.disconnect()
        assert session.current_state().state is SessionState.DISCONNECTED
        assert session.connect("/dev/fake1") is True
        assert session.current_state() == SessionStatus(SessionState.CONNECTED, "/dev/fake1")
        assert session.history_snapshot() == before
        _report("PASS", "Reconnect does not reset history")

    def test_context_manager_closes_link(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        with _make_session(echo_factory) as session:
            session.connect("/dev/fake0")
            link = echo_factory.last
        assert link.closed
        assert not session.is_connected()
        _report("PASS", "Leaving 'with' releases the link")

    def test_close_error_does_not_propagate(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")

        def bad_close():
            # type: () -> None
            raise OSError("device vanished")

        echo_factory.last.close = bad_close
        session.disconnect()
        assert not session.is_connected()
        _report("PASS", "Errors while closing are logged, not raised")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Candidate discovery
# ═══════════════════════════════════════════════════════════════════════════

class TestCandidates:
    """Port discovery is cached and failure-tolerant."""

    def test_candidates_listed(self):
        # type: () -> None
        session = _make_session(candidates=("/dev/ttyUSB0", "/dev/ttyACM0"))
        assert session.list_candidates() == ["/dev/ttyUSB0", "/dev/ttyACM0"]
        _report("PASS", "Candidates from discovery are exposed")

    def test_discovery_failure_means_no_candidates(self):
        # type: () -> None
        def broken():
            # type: () -> list
            raise OSError("udev unavailable")

        session = Session(link_factory=FakeLinkFactory(), discover=broken)
        assert session.list_candidates() == []
        assert session.refresh_candidates() == []
        assert session.last_error is None
        _report("PASS", "Failed discovery is 'no candidates', not an error")

    def test_refresh_picks_up_new_ports(self):
        # type: () -> None
        ports = ["/dev/ttyUSB0"]
        session = Session(link_factory=FakeLinkFactory(), discover=lambda: list(ports))
        ports.append("/dev/ttyUSB1")
        assert session.list_candidates() == ["/dev/ttyUSB0"]
        assert session.refresh_candidates() == ["/dev/ttyUSB0", "/dev/ttyUSB1"]
        assert session.list_candidates() == ["/dev/ttyUSB0", "/dev/ttyUSB1"]
        _report("PASS", "refresh_candidates() re-runs discovery")

    def test_disconnect_refreshes_candidates(self):
        # type: () -> None
        ports = ["/dev/ttyUSB0"]
        session = Session(link_factory=FakeLinkFactory(), discover=lambda: list(ports))
        session.connect("/dev/ttyUSB0")
        ports.append("/dev/ttyUSB1")
        session.disconnect()
        assert session.list_candidates() == ["/dev/ttyUSB0", "/dev/ttyUSB1"]
        _report("PASS", "Port list refreshed after disconnect")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Command exchange
# ═══════════════════════════════════════════════════════════════════════════

class TestSubmit:
    """The write-then-read exchange and its history lines."""

    def test_round_trip(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit("STATUS")
        assert session.history_snapshot() == ("> STATUS", "< OK")
        _report("PASS", "'STATUS' -> '> STATUS', '< OK'")

    def test_written_bytes_are_command_then_terminator(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit("STATUS")
        assert echo_factory.last.writes == [b"STATUS", b"\r\n"]
        _report("PASS", "Command and CRLF written as two all-or-nothing writes")

    @pytest.mark.parametrize("terminator,expected", [
        (LineTerminator.NONE, b""),
        (LineTerminator.CR, b"\r"),
        (LineTerminator.LF, b"\n"),
        (LineTerminator.CRLF, b"\r\n"),
    ])
    def test_terminator_bytes(self, silent_factory, terminator, expected):
        # type: (FakeLinkFactory, LineTerminator, bytes) -> None
        session = _make_session(silent_factory, terminator=terminator)
        session.connect("/dev/fake0")
        session.submit("PING")
        written = silent_factory.last.written
        assert written.startswith(b"PING")
        assert written[len(b"PING"):] == expected
        _report("PASS", "{} -> {!r}".format(terminator.label, expected))

    def test_terminator_change_while_connected(self, silent_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(silent_factory)
        session.connect("/dev/fake0")
        session.set_terminator(LineTerminator.LF)
        session.submit("A")
        session.set_terminator(LineTerminator.CR)
        session.submit("B")
        assert silent_factory.last.written == b"A\nB\r"
        assert session.terminator is LineTerminator.CR
        _report("PASS", "Terminator applies from the next submit")

    def test_timeout_gives_only_echo_line(self, silent_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(silent_factory)
        session.connect("/dev/fake0")
        session.submit("PING")
        assert session.history_snapshot() == ("> PING",)
        assert session.is_connected()
        assert session.last_error is None
        _report("PASS", "Silent device -> echo line only, no error")

    def test_end_of_stream_ends_read(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"PARTIAL", eof_when_empty=True)
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("> X", "< PARTIAL")
        _report("PASS", "EOF ends the read and keeps the partial response")

    def test_partial_line_before_timeout_is_kept(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"NO NEWLINE")
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("> X", "< NO NEWLINE")
        _report("PASS", "Response without newline still recorded after timeout")

    def test_reads_stop_at_first_newline(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"LINE1\nLINE2\n")
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("> X", "< LINE1")
        assert bytes(factory.last.pending) == b"LINE2\n"
        _report("PASS", "Only one response line consumed per submit")

    def test_crlf_response_trimmed(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"  VALUE 42 \r\n")
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("READ")
        assert session.history_snapshot() == ("> READ", "<   VALUE 42")
        _report("PASS", "Trailing whitespace and CR trimmed, leading kept")

    def test_blank_response_dropped(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b" \t\r\n")
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("> X",)
        _report("PASS", "Whitespace-only response produces no line")

    def test_bytes_decoded_one_char_each(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"T=25\xb0C\n")
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("TEMP")
        assert session.history_snapshot()[-1] == "< T=25°C"
        _report("PASS", "Each byte maps to one character (Latin-1)")

    def test_command_trailing_whitespace_trimmed(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit("  MEAS:VOLT?  \r\n")
        assert echo_factory.last.writes[0] == b"  MEAS:VOLT?"
        assert session.history_snapshot()[0] == ">   MEAS:VOLT?"
        _report("PASS", "Only trailing whitespace is removed from commands")

    @pytest.mark.parametrize("raw", ["", "   ", "\n", "\r\n\t "])
    def test_blank_command_is_noop(self, echo_factory, raw):
        # type: (FakeLinkFactory, str) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit(raw)
        assert session.history_snapshot() == ()
        assert session.last_error is None
        assert echo_factory.last.writes == []
        _report("PASS", "Blank command {!r} ignored".format(raw))

    def test_submit_while_disconnected_is_noop(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.submit("STATUS")
        assert session.history_snapshot() == ()
        assert echo_factory.calls == []
        _report("PASS", "No I/O and no history while disconnected")

    def test_submit_after_disconnect_is_noop(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        link = echo_factory.last
        session.disconnect()
        session.submit("STATUS")
        assert link.writes == []
        assert session.history_snapshot() == ()
        _report("PASS", "Closed link is never written to")

    def test_sequential_exchanges(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit("A")
        session.submit("B")
        assert session.history_snapshot() == ("> A", "< OK", "> B", "< OK")
        _report("PASS", "Exchanges complete in order")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Exchange failures
# ═══════════════════════════════════════════════════════════════════════════

class TestSubmitFailures:
    """Write and read failures become history lines; the link is kept."""

    def test_write_failure(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"OK\n", write_error_on_call=1)
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("Error sending: simulated write fault",)
        assert session.current_state() == SessionStatus(SessionState.CONNECTED, "/dev/fake0")
        assert not factory.last.closed
        _report("PASS", "Write failure -> one diagnostic line, still CONNECTED")

    def test_terminator_write_failure(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"OK\n", write_error_on_call=2)
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("Error sending newline: simulated write fault",)
        assert session.is_connected()
        _report("PASS", "Terminator write failure reported separately")

    def test_write_failure_then_retry_on_same_link(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"OK\n", write_error_on_call=1)
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        session.submit("Y")
        assert session.history_snapshot() == (
            "Error sending: simulated write fault",
            "> Y",
            "< OK",
        )
        assert len(factory.links) == 1
        _report("PASS", "Next submit reuses the retained link")

    def test_read_failure(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"OK\n", read_error_after=1)
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("> X", "Read error: simulated read fault")
        assert session.is_connected()
        _report("PASS", "Read failure -> echo line + diagnostic, still CONNECTED")

    def test_read_failure_discards_partial_response(self):
        # type: () -> None
        factory = FakeLinkFactory(reply=b"PARTIAL\n", read_error_after=3)
        session = _make_session(factory)
        session.connect("/dev/fake0")
        session.submit("X")
        assert session.history_snapshot() == ("> X", "Read error: simulated read fault")
        _report("PASS", "No response line after a read failure")

    def test_escaped_surrogate_sent_as_raw_byte(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit("A\udcff")
        assert echo_factory.last.writes[0] == b"A\xff"
        assert session.history_snapshot() == ("> A\udcff", "< OK")
        _report("PASS", "surrogateescape command restored to its original byte")

    def test_unencodable_command_reported(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        session.submit("A\ud800")
        snapshot = session.history_snapshot()
        _report("HISTORY", repr(snapshot))
        assert len(snapshot) == 1
        assert snapshot[0].startswith("Error sending: ")
        assert echo_factory.last.writes == []
        assert session.current_state() == SessionStatus(SessionState.CONNECTED, "/dev/fake0")

        session.submit("B")
        assert session.history_snapshot()[-2:] == ("> B", "< OK")
        _report("PASS", "Lone surrogate -> diagnostic line, link still usable")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — History bound through the session
# ═══════════════════════════════════════════════════════════════════════════

class TestSessionHistoryBound:
    """The session never holds more than the history capacity."""

    def test_default_capacity(self):
        # type: () -> None
        session = _make_session()
        assert session.history.capacity == HISTORY_CAPACITY == 100
        _report("PASS", "Default capacity is 100")

    def test_oldest_lines_evicted(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory, history_capacity=5)
        session.connect("/dev/fake0")
        for i in range(4):
            session.submit("CMD{}".format(i))
        snapshot = session.history_snapshot()
        assert snapshot == ("< OK", "> CMD2", "< OK", "> CMD3", "< OK")
        assert session.history.appended_count == 8
        _report("PASS", "Only the newest 5 lines retained")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS — Typeguard Enforcement
# ═══════════════════════════════════════════════════════════════════════════

class TestTypeguardEnforcement:
    """@typechecked Session rejects wrong argument types at runtime."""

    def test_set_terminator_rejects_string(self):
        # type: () -> None
        session = _make_session()
        with pytest.raises(_TYPEGUARD_ERRORS):
            session.set_terminator("CRLF")  # type: ignore[arg-type]
        _report("PASS", "set_terminator('CRLF') rejected")

    def test_submit_rejects_bytes(self, echo_factory):
        # type: (FakeLinkFactory) -> None
        session = _make_session(echo_factory)
        session.connect("/dev/fake0")
        with pytest.raises(_TYPEGUARD_ERRORS):
            session.submit(b"STATUS")  # type: ignore[arg-type]
        _report("PASS", "submit(b'...') rejected")

    def test_link_factory_must_be_callable(self):
        # type: () -> None
        with pytest.raises(_TYPEGUARD_ERRORS):
            Session(link_factory=123)  # type: ignore[arg-type]
        _report("PASS", "Session(link_factory=123) rejected")


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
