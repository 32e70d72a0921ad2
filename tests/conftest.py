"""Shared fixtures: synthetic pages and fake collaborators."""

from pathlib import Path

import numpy as np
import pytest

from scrollshot.capture import CaptureError
from scrollshot.frame import Frame, Region


def make_page(height: int, width: int = 64, seed: int = 0) -> np.ndarray:
    """Random RGBA page; noise never matches itself at a non-zero shift."""
    rng = np.random.default_rng(seed)
    page = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    page[:, :, 3] = 255
    return page


def frame_at(page: np.ndarray, top: int, height: int) -> Frame:
    """The frame seen when the viewport's top edge is at ``top``."""
    return Frame(pixels=page[top:top + height].copy())


class FakeProvider:
    """Returns queued frames, or raises queued CaptureErrors."""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.regions = []

    def capture_region(self, region: Region) -> Frame:
        self.regions.append(region)
        item = self.frames.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeFileWriter:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def write_image_file(self, path, data, width, height, image_format, quality):
        if self.fail:
            raise OSError("disk full")
        self.calls.append((Path(path), data, width, height, image_format, quality))
        return Path(path)


class FakeClipboardWriter:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def write_image(self, data, width, height):
        if self.fail:
            raise RuntimeError("no clipboard")
        self.calls.append((data, width, height))


@pytest.fixture
def page():
    return make_page(400)


@pytest.fixture
def region():
    return Region(0, 0, 64, 100)


@pytest.fixture
def capture_error():
    return CaptureError("output disappeared")
