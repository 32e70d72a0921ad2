"""Composite image buffer.

The composite is a single preallocated numpy array that grows by
doubling. Rows below ``height`` are written once and never modified,
so snapshot views handed out earlier stay valid after later appends.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import SizeMismatch
from .frame import CHANNELS, Frame

log = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CompositeImage:
    """Read-only view of the stitched image."""

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def to_bytes(self) -> bytes:
        """Return the packed RGBA buffer."""
        return np.ascontiguousarray(self.pixels).tobytes()


class FrameStore:
    """Owns and grows the composite pixel buffer."""

    def __init__(self, initial_capacity_rows: int = 0):
        self.initial_capacity_rows = max(0, initial_capacity_rows)
        self._buffer: Optional[np.ndarray] = None
        self._width = 0
        self._height = 0

    @property
    def capacity(self) -> int:
        return 0 if self._buffer is None else self._buffer.shape[0]

    def current_height(self) -> int:
        return self._height

    def current_size(self) -> tuple[int, int]:
        return self._width, self._height

    def is_empty(self) -> bool:
        return self._height == 0

    def _reserve(self, rows: int, width: int) -> None:
        needed = self._height + rows
        if self._buffer is None:
            capacity = max(self.initial_capacity_rows, needed)
            self._buffer = np.empty((capacity, width, CHANNELS), dtype=np.uint8)
            log.debug("Allocated composite buffer %dx%d", width, capacity)
            return

        capacity = self._buffer.shape[0]
        if needed <= capacity:
            return
        new_capacity = max(capacity * 2, needed)
        grown = np.empty((new_capacity, width, CHANNELS), dtype=np.uint8)
        grown[:self._height] = self._buffer[:self._height]
        self._buffer = grown
        log.debug("Grew composite buffer %d -> %d rows", capacity, new_capacity)

    def append(self, frame: Frame, skip_rows: int = 0) -> int:
        """Copy ``frame`` rows from ``skip_rows`` onto the end of the composite.

        Returns:
            Number of rows added

        Raises:
            SizeMismatch: If the frame width differs from the composite width
            ValueError: If skip_rows is outside the frame
        """
        if self._buffer is not None and frame.width != self._width:
            raise SizeMismatch(self._width, frame.width)
        if skip_rows < 0 or skip_rows > frame.height:
            raise ValueError(f"skip_rows {skip_rows} outside frame of height {frame.height}")

        rows = frame.height - skip_rows
        self._reserve(rows, frame.width)
        self._width = frame.width
        self._buffer[self._height:self._height + rows] = frame.pixels[skip_rows:]
        self._height += rows
        return rows

    def tail(self, rows: int) -> np.ndarray:
        """Read-only view of the last ``rows`` rows (fewer if the composite is shorter)."""
        if self._buffer is None:
            return np.empty((0, 0, CHANNELS), dtype=np.uint8)
        start = max(0, self._height - rows)
        view = self._buffer[start:self._height]
        view.setflags(write=False)
        return view

    def snapshot(self) -> CompositeImage:
        """Return the composite as it stands; partial results are valid images."""
        return CompositeImage(self.tail(self._height))

    def reset(self) -> None:
        self._buffer = None
        self._width = 0
        self._height = 0
