"""Type definitions for Serial Line Terminal."""

from typing import Callable, List, Tuple

# Port identifiers as produced by discovery (e.g. "/dev/ttyUSB0", "COM3")
PortIdentifier = str
CandidateList = List[PortIdentifier]

# Rendered output history, oldest line first
HistoryLines = Tuple[str, ...]

# Discovery hook: () -> list of port identifiers
DiscoverFunc = Callable[[], CandidateList]
