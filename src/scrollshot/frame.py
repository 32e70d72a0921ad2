"""Capture geometry and immutable frame buffers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import numpy as np

CHANNELS = 4


@dataclass(frozen=True)
class Region:
    """Screen rectangle in physical pixels."""

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Region must have positive size, got {self.width}x{self.height}")

    @classmethod
    def parse(cls, value: str) -> "Region":
        """Parse an ``X,Y,W,H`` string (e.g. ``100,100,800,600``)."""
        parts = value.split(",")
        if len(parts) != 4:
            raise ValueError(f"Invalid region {value!r}, expected X,Y,W,H")
        x, y, w, h = (int(p.strip()) for p in parts)
        return cls(x, y, w, h)

    def __str__(self) -> str:
        return f"{self.x},{self.y},{self.width},{self.height}"


@dataclass(frozen=True, eq=False)
class Frame:
    """One captured screenshot of the scrolling region.

    ``pixels`` is a read-only ``(height, width, 4)`` uint8 array of
    row-major RGBA data.
    """

    pixels: np.ndarray
    region: Optional[Region] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        pixels = self.pixels
        if pixels.ndim != 3 or pixels.shape[2] != CHANNELS:
            raise ValueError(f"Frame pixels must have shape (h, w, 4), got {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"Frame pixels must be uint8, got {pixels.dtype}")
        if pixels.flags.writeable:
            pixels = pixels.copy()
            pixels.setflags(write=False)
            object.__setattr__(self, "pixels", pixels)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @classmethod
    def from_rgba(
        cls,
        data: bytes,
        width: int,
        height: int,
        region: Optional[Region] = None,
    ) -> "Frame":
        """Build a frame from a packed RGBA byte buffer."""
        expected = width * height * CHANNELS
        if len(data) != expected:
            raise ValueError(
                f"RGBA buffer has {len(data)} bytes, expected {expected} for {width}x{height}"
            )
        pixels = np.frombuffer(data, dtype=np.uint8).reshape(height, width, CHANNELS)
        return cls(pixels=pixels, region=region)

    def same_pixels(self, other: "Frame") -> bool:
        """Return True if both frames hold identical pixel data."""
        return self.pixels.shape == other.pixels.shape and np.array_equal(self.pixels, other.pixels)
