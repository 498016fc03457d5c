"""Newline framing for the tracker's serial stream.

The device writes one record per line, but the transport hands us
arbitrary slices of that stream. ``LineBuffer`` holds the unterminated
tail between reads so that a record split across two deliveries is
reassembled before it reaches the parser.
"""

from __future__ import annotations

import logging
from typing import List, Optional

LOGGER = logging.getLogger(__name__)

LINE_DELIMITER = "\n"


class LineBuffer:
    """Accumulate stream chunks and emit complete lines in arrival order.

    ``max_length`` bounds the held-back partial line. When a chunk pushes the
    partial line past that size, the partial line is discarded and
    ``overflow_count`` is incremented. ``None`` (or ``0``) keeps the buffer
    unbounded.
    """

    def __init__(self, max_length: Optional[int] = None) -> None:
        self._pending = ""
        self._max_length = max_length or None

        self.overflow_count = 0

    @property
    def pending(self) -> str:
        """The unterminated suffix of everything appended so far."""
        return self._pending

    def append(self, chunk: str) -> List[str]:
        if not chunk:
            return []

        segments = (self._pending + chunk).split(LINE_DELIMITER)
        self._pending = segments.pop()

        if self._max_length is not None and len(self._pending) > self._max_length:
            LOGGER.warning(
                "Discarding %d buffered characters without a line delimiter",
                len(self._pending),
            )
            self.overflow_count += 1
            self._pending = ""

        return segments
