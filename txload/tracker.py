"""Tracks out-of-order insert completion and exposes the committed watermark."""

from __future__ import annotations

import threading

from txload.errors import TrackerOverrunError

DEFAULT_WINDOW_SIZE = 1 << 20


class AcknowledgedKeyTracker:
    """Hands out insert sequence numbers and tracks which ones have completed.

    Inserts finish in any order. ``high_water_mark()`` only ever reports the
    greatest offset V such that every offset up to V has been acknowledged, so
    a reader that stays at or below it never references a row that may still
    be in flight.

    Acknowledgements land in a ring of ``window_size`` slots anchored at the
    lowest unacknowledged offset. After each acknowledgement the anchor slides
    forward over every contiguous acknowledged slot; that slide is the only
    thing that moves the watermark.
    """

    def __init__(self, start: int, window_size: int = DEFAULT_WINDOW_SIZE) -> None:
        if window_size <= 0:
            raise ValueError(f"window_size must be > 0 (got {window_size})")
        self.start = start
        self.window_size = window_size
        self._window = bytearray(window_size)
        self._low = start
        self._next = start
        self._issue_lock = threading.Lock()
        self._ack_lock = threading.Lock()

    def next_sequence(self) -> int:
        """Issue the next insert offset; offsets are strictly increasing."""
        with self._issue_lock:
            offset = self._next
            self._next += 1
        return offset

    def acknowledge(self, offset: int) -> None:
        """Mark ``offset`` as durably inserted.

        Offsets already below the watermark, or already acknowledged, are
        ignored. Raises TrackerOverrunError when ``offset`` lies beyond the
        window.
        """
        with self._ack_lock:
            low = self._low
            if offset < low:
                return
            if offset - low >= self.window_size:
                raise TrackerOverrunError(
                    f"offset {offset} is {offset - low} ahead of watermark base {low}; "
                    f"window of {self.window_size} slots is too small"
                )
            slot = offset % self.window_size
            if self._window[slot]:
                return
            self._window[slot] = 1
            slot = low % self.window_size
            while self._window[slot]:
                self._window[slot] = 0
                low += 1
                slot = low % self.window_size
            self._low = low

    def high_water_mark(self) -> int:
        """Greatest offset V with every offset up to V acknowledged (``start - 1`` if none)."""
        return self._low - 1

    def acknowledged_count(self) -> int:
        """Length of the contiguous acknowledged run beginning at ``start``."""
        return self._low - self.start

    def issued_count(self) -> int:
        with self._issue_lock:
            return self._next - self.start
