"""Command-line interface for the serial line terminal."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from . import DEFAULT_NEWLINE, DEFAULT_PORT
from .console import InteractiveConsole
from .exceptions import InvalidSettingError
from .link import describe_candidates
from .session import Session
from .terminator import LineTerminator


def _configure_logging(verbose: bool) -> None:
    """Route library log output to stderr when ``--verbose`` is given."""
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _parse_terminator(label: str) -> LineTerminator:
    """argparse ``type=`` adapter for terminator labels."""
    try:
        return LineTerminator.from_label(label)
    except InvalidSettingError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def command_ports(args) -> int:
    """List available serial ports."""
    ports = describe_candidates()
    if not ports:
        print("No serial ports found.")
    else:
        print("Available serial ports:")
        for p in ports:
            print(f"  {p}")
    return 0


def command_terminal(args) -> int:
    """Run the interactive console."""
    session = Session(terminator=args.newline)
    if args.serial_port and not session.connect(args.serial_port):
        print(f"Error: {session.last_error}", file=sys.stderr)
    console = InteractiveConsole(session)
    return console.run()


def command_send(args) -> int:
    """Connect, send each command, print the exchange, disconnect."""
    port = args.serial_port
    if not port:
        print(
            "Error: No serial port given. Pass --serial-port or set SERIAL_TERM_PORT.",
            file=sys.stderr,
        )
        return 1

    with Session(terminator=args.newline) as session:
        if not session.connect(port):
            print(f"Error: {session.last_error}", file=sys.stderr)
            return 1
        for command in args.commands:
            session.submit(command)
        for line in session.history_snapshot():
            print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="serial-term",
        description="Serial Line Terminal - send commands to a serial device and read the replies",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Log debug output to stderr",
    )

    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    # List ports
    ports_parser = subparsers.add_parser("ports", help="List available serial ports")
    ports_parser.set_defaults(func=command_ports)

    # Interactive terminal
    term_parser = subparsers.add_parser("terminal", help="Interactive command/response terminal")
    term_parser.add_argument(
        "--serial-port", "--port", dest="serial_port",
        type=str, default=DEFAULT_PORT or None,
        help="Serial port to open on start (e.g. /dev/ttyUSB0 or COM3). "
             "Default: $SERIAL_TERM_PORT.",
    )
    term_parser.add_argument(
        "--newline", type=_parse_terminator, default=DEFAULT_NEWLINE,
        help="Line terminator: None, CR, LF, CRLF (default: $SERIAL_TERM_NEWLINE or CRLF)",
    )
    term_parser.set_defaults(func=command_terminal)

    # One-shot send
    send_parser = subparsers.add_parser(
        "send", help="Send one or more commands and print the replies",
    )
    send_parser.add_argument(
        "commands", metavar="COMMAND", nargs="+",
        help="Command(s) to send, one exchange each",
    )
    send_parser.add_argument(
        "--serial-port", "--port", dest="serial_port",
        type=str, default=DEFAULT_PORT or None,
        help="Serial port path (e.g. /dev/ttyUSB0 or COM3). Default: $SERIAL_TERM_PORT.",
    )
    send_parser.add_argument(
        "--newline", type=_parse_terminator, default=DEFAULT_NEWLINE,
        help="Line terminator: None, CR, LF, CRLF (default: $SERIAL_TERM_NEWLINE or CRLF)",
    )
    send_parser.set_defaults(func=command_send)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
