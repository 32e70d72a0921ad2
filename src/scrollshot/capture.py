"""Screen capture provider.

Uses the wayland-capture binary for the actual screen capture, then
decodes the temporary PNG into an RGBA Frame with GdkPixbuf.
"""

import json
import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

from .config import Config, get_config
from .frame import CHANNELS, Frame, Region

log = logging.getLogger(__name__)


class CaptureError(Exception):
    """Raised when capture fails."""
    pass


class CaptureProvider(Protocol):
    """Anything that can snapshot a screen rectangle."""

    def capture_region(self, region: Region) -> Frame:
        ...


def get_primary_output(config: Optional[Config] = None) -> Optional[str]:
    """Get the primary output name from wayland-capture.

    Returns:
        Output name (e.g., 'eDP-1') or None if unavailable
    """
    config = config or get_config()
    try:
        result = subprocess.run(
            [config.wayland_capture, "--list", "--json"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            outputs = json.loads(result.stdout).get("outputs", [])
            if outputs:
                return outputs[0].get("name")
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        log.warning("Could not get output list: %s", e)
    return None


def capture_region_file(region: Region, config: Optional[Config] = None) -> Path:
    """Capture a region of the primary output into a temporary PNG.

    Returns:
        Path to temporary PNG file (caller deletes it)

    Raises:
        CaptureError: If capture fails
    """
    config = config or get_config()

    output_name = get_primary_output(config)
    if not output_name:
        raise CaptureError("Could not determine output to capture")

    tmp = tempfile.NamedTemporaryFile(suffix=".png", delete=False)
    temp_path = Path(tmp.name)
    tmp.close()

    try:
        result = subprocess.run(
            [
                config.wayland_capture,
                "--output", output_name,
                "--region", str(region),
                "--output-file", str(temp_path),
            ],
            capture_output=True,
            text=True,
            timeout=config.capture_timeout_s,
        )
    except subprocess.TimeoutExpired:
        temp_path.unlink(missing_ok=True)
        raise CaptureError("Region capture timed out")
    except FileNotFoundError:
        temp_path.unlink(missing_ok=True)
        raise CaptureError(f"wayland-capture not found: {config.wayland_capture}")

    if result.returncode != 0:
        temp_path.unlink(missing_ok=True)
        raise CaptureError(f"Region capture failed: {result.stderr.strip()}")
    return temp_path


def pixels_from_pixbuf(pixbuf) -> np.ndarray:
    """Copy a GdkPixbuf into a (height, width, 4) RGBA array."""
    if not pixbuf.get_has_alpha():
        pixbuf = pixbuf.add_alpha(False, 0, 0, 0)

    width = pixbuf.get_width()
    height = pixbuf.get_height()
    stride = pixbuf.get_rowstride()

    # The last row is not padded to the full rowstride
    raw = np.frombuffer(pixbuf.get_pixels(), dtype=np.uint8)
    padded = np.zeros(stride * height, dtype=np.uint8)
    padded[:raw.size] = raw[:stride * height]
    return padded.reshape(height, stride)[:, :width * CHANNELS].reshape(height, width, CHANNELS)


def load_frame(path: Path, region: Optional[Region] = None) -> Frame:
    """Decode an image file into a Frame.

    Raises:
        CaptureError: If the file cannot be decoded
    """
    import gi
    gi.require_version("GdkPixbuf", "2.0")
    from gi.repository import GdkPixbuf, GLib

    try:
        pixbuf = GdkPixbuf.Pixbuf.new_from_file(str(path))
    except GLib.Error as e:
        raise CaptureError(f"Could not decode capture {path}: {e.message}")

    frame = Frame(pixels=pixels_from_pixbuf(pixbuf), region=region)
    if region is not None and (frame.width, frame.height) != (region.width, region.height):
        log.debug(
            "Captured %dx%d for region %s (output scaling?)",
            frame.width, frame.height, region,
        )
    return frame


class WaylandCaptureProvider:
    """Captures regions with wayland-capture."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()

    def capture_region(self, region: Region) -> Frame:
        temp_path = capture_region_file(region, self.config)
        try:
            return load_frame(temp_path, region)
        finally:
            temp_path.unlink(missing_ok=True)
