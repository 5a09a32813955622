"""Line terminator policy appended after every command."""

from __future__ import annotations

import enum

from .exceptions import InvalidSettingError


class LineTerminator(enum.Enum):
    """Byte sequence written after the command text.

    The enum value is the display label; ``as_bytes()`` gives what goes on
    the wire.
    """

    NONE = "None"
    CR = "CR"
    LF = "LF"
    CRLF = "CRLF"

    @property
    def label(self) -> str:
        return self.value

    def as_bytes(self) -> bytes:
        return _TERMINATOR_BYTES[self]

    @classmethod
    def from_label(cls, text: str) -> LineTerminator:
        """Parse a label such as ``"crlf"`` or ``"None"`` (case-insensitive).

        Raises:
            InvalidSettingError: If *text* names no terminator.
        """
        wanted = text.strip().upper()
        for member in cls:
            if member.value.upper() == wanted:
                return member
        valid = ", ".join(member.value for member in cls)
        raise InvalidSettingError(
            f"Invalid line terminator {text!r}. Must be one of: {valid}."
        )


_TERMINATOR_BYTES = {
    LineTerminator.NONE: b"",
    LineTerminator.CR: b"\r",
    LineTerminator.LF: b"\n",
    LineTerminator.CRLF: b"\r\n",
}
