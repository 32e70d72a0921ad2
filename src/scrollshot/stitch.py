"""Overlap detection between the composite tail and a new frame.

A scroll between two captures shifts the content up by some number of
rows, so the top of the new frame repeats the bottom of the composite.
Candidate shifts are scanned from no movement (full overlap) upward and
the first one whose pixels agree within tolerance wins. Favoring the
largest overlap keeps repeated rows out of the composite.

Pixel agreement is the mean absolute RGB difference normalized to
[0, 1], which tolerates anti-aliasing and compression noise. Before the
full comparison, a per-row mean profile rules out most shifts cheaply:
the profile difference is a lower bound on the pixel difference, so the
prefilter never rejects a real match.
"""

import logging
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import numpy as np

from .errors import SizeMismatch
from .frame import Frame

if TYPE_CHECKING:
    from .config import Config
    from .store import FrameStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StitchSettings:
    """Tunable overlap search parameters."""

    match_threshold: float = 0.99  # Minimum similarity for an overlap match
    max_search_rows: int = 1200  # Largest scroll shift examined, in rows
    min_overlap_rows: int = 4  # Smallest overlap accepted as a match
    column_step: int = 1  # Compare every Nth column

    def __post_init__(self):
        if not 0.0 <= self.match_threshold <= 1.0:
            raise ValueError("match_threshold must be within [0, 1]")
        if self.max_search_rows < 0:
            raise ValueError("max_search_rows must be >= 0")
        if self.min_overlap_rows < 1:
            raise ValueError("min_overlap_rows must be >= 1")
        if self.column_step < 1:
            raise ValueError("column_step must be >= 1")

    @property
    def tolerance(self) -> float:
        """Largest mean absolute difference (0-255 scale) that still matches."""
        return (1.0 - self.match_threshold) * 255.0

    @classmethod
    def from_config(cls, config: "Config") -> "StitchSettings":
        return cls(
            match_threshold=config.match_threshold,
            max_search_rows=config.max_search_rows,
            min_overlap_rows=config.min_overlap_rows,
            column_step=config.column_step,
        )


@dataclass(frozen=True)
class OverlapResult:
    """Outcome of aligning a frame against the composite tail.

    ``offset`` is the number of leading frame rows that repeat the
    composite tail. ``is_duplicate`` means the frame adds no new rows.
    """

    offset: int
    confidence: float
    is_duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "offset": self.offset,
            "confidence": round(self.confidence, 4),
            "is_duplicate": self.is_duplicate,
        }


def _rgb(pixels: np.ndarray, column_step: int) -> np.ndarray:
    return pixels[:, ::column_step, :3]


def _row_profile(rgb: np.ndarray) -> np.ndarray:
    return rgb.mean(axis=(1, 2), dtype=np.float64)


def similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Normalized similarity of two equally shaped pixel blocks, 1.0 is exact."""
    if a.shape != b.shape:
        raise ValueError(f"Cannot compare blocks of shape {a.shape} and {b.shape}")
    if a.size == 0:
        return 1.0
    diff = np.abs(a.astype(np.int16) - b.astype(np.int16))
    return 1.0 - float(diff.mean()) / 255.0


def detect_overlap(
    previous_tail: np.ndarray,
    next_frame: Frame,
    max_search_rows: Optional[int] = None,
    settings: Optional[StitchSettings] = None,
) -> OverlapResult:
    """Find how many leading rows of ``next_frame`` repeat ``previous_tail``.

    Args:
        previous_tail: Last rows of the composite, shape (rows, width, 4)
        next_frame: Newly captured frame
        max_search_rows: Largest shift to examine (defaults to settings)
        settings: Search parameters

    Returns:
        OverlapResult for the highest-scoring shift, the larger overlap
        winning ties. ``offset`` is 0 when no shift matched, in which case
        ``confidence`` is the best score seen.

    Raises:
        SizeMismatch: If the tail and frame widths differ
    """
    settings = settings or StitchSettings()
    if max_search_rows is None:
        max_search_rows = settings.max_search_rows

    tail_height = previous_tail.shape[0]
    if tail_height == 0:
        return OverlapResult(offset=0, confidence=0.0, is_duplicate=False)
    if previous_tail.shape[1] != next_frame.width:
        raise SizeMismatch(previous_tail.shape[1], next_frame.width)

    rows = min(tail_height, next_frame.height)
    min_overlap = min(settings.min_overlap_rows, rows)
    last_shift = min(max_search_rows, rows - min_overlap)

    tail = _rgb(previous_tail[tail_height - rows:], settings.column_step)
    head = _rgb(next_frame.pixels[:rows], settings.column_step)
    tail_profile = _row_profile(tail)
    head_profile = _row_profile(head)
    tolerance = settings.tolerance

    best_score = 0.0
    best_shift = None
    for shift in range(last_shift + 1):
        overlap = rows - shift
        profile_diff = float(np.abs(tail_profile[shift:] - head_profile[:overlap]).mean())
        if profile_diff > tolerance:
            if best_shift is None:
                best_score = max(best_score, 1.0 - profile_diff / 255.0)
            continue

        score = similarity(tail[shift:], head[:overlap])
        # Strictly greater keeps the larger overlap on ties
        if score >= settings.match_threshold and (best_shift is None or score > best_score):
            best_shift, best_score = shift, score
            if score == 1.0:
                break
        elif best_shift is None:
            best_score = max(best_score, score)

    if best_shift is None:
        log.debug("No overlap found within %d rows (best score %.4f)", last_shift, best_score)
        return OverlapResult(offset=0, confidence=best_score, is_duplicate=False)

    overlap = rows - best_shift
    log.debug("Overlap %d rows at shift %d (score %.4f)", overlap, best_shift, best_score)
    return OverlapResult(
        offset=overlap,
        confidence=best_score,
        is_duplicate=overlap == next_frame.height,
    )


def merge(
    store: "FrameStore",
    frame: Frame,
    settings: Optional[StitchSettings] = None,
) -> OverlapResult:
    """Align ``frame`` against the composite in ``store`` and append its new rows.

    Duplicates leave the store unchanged.

    Raises:
        SizeMismatch: If the frame width differs from the composite width
    """
    if not store.is_empty() and frame.width != store.current_size()[0]:
        raise SizeMismatch(store.current_size()[0], frame.width)

    result = detect_overlap(store.tail(frame.height), frame, settings=settings)
    if not result.is_duplicate:
        store.append(frame, skip_rows=result.offset)
    return result
