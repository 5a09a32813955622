"""
Serial Line Terminal - interactive command/response terminal for serial links

This package drives line-oriented exchanges with UART-attached devices
(bench instruments, microcontroller consoles, modems).  It includes:

- **Session engine** with a connect/disconnect state machine
- **Framed exchange**: command + configurable line terminator, then a
  byte-at-a-time read until newline or read timeout
- **Bounded output history** that the front-end renders
- **Port discovery** through pyserial
- **Interactive console** and a ``serial-term`` command-line entry point

Cross-platform: works on Windows (COMx) and Linux
(/dev/ttyUSB*, /dev/ttyS*, /dev/ttyACM*).
"""

import logging
import os

logging.getLogger("serial_line_terminal").addHandler(logging.NullHandler())

__version__ = "0.1.0"

# Serial line settings.  Fixed protocol parameters, not user-configurable.
SERIAL_BAUD_RATE = 9600
SERIAL_BYTESIZE = 8       # 8 data bits
SERIAL_PARITY = "N"       # No parity
SERIAL_STOPBITS = 1       # 1 stop bit
SERIAL_READ_TIMEOUT = 2.0   # seconds — bounds every single-byte read
SERIAL_WRITE_TIMEOUT = 2.0  # seconds — blocking with failsafe; prevents infinite hangs

# A response line ends at this byte; it is never part of the response text.
SERIAL_RESPONSE_TERMINATOR = b"\n"

# Output history settings
HISTORY_CAPACITY = 100

# Front-end defaults.  Override via environment variables:
#   SERIAL_TERM_PORT     e.g. /dev/ttyUSB0 or COM3
#   SERIAL_TERM_NEWLINE  one of None, CR, LF, CRLF
DEFAULT_PORT = os.environ.get("SERIAL_TERM_PORT", "")
DEFAULT_NEWLINE = os.environ.get("SERIAL_TERM_NEWLINE", "CRLF")
