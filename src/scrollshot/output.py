"""Export of the stitched composite.

Handles:
- Encoding RGBA buffers with GdkPixbuf (png, jpg, webp)
- Writing files and copying to the clipboard (wl-copy)
- Publishing results (events, save hooks, JSON output for scripting)
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from .config import Config, get_config
from .emit import emit
from .hooks import notify_save

log = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("png", "jpg", "jpeg", "webp")


class FileWriter(Protocol):
    def write_image_file(
        self,
        path: Path,
        data: bytes,
        width: int,
        height: int,
        image_format: str,
        quality: int,
    ) -> Path:
        ...


class ClipboardWriter(Protocol):
    def write_image(self, data: bytes, width: int, height: int) -> None:
        ...


@dataclass
class OutputOptions:
    """Options for output handling."""

    output_path: Optional[Path] = None  # Custom output path
    output_format: str = "png"  # png, jpg, webp
    quality: int = 90  # Quality for lossy formats

    clipboard: bool = True

    # Output modes (mutually exclusive)
    stdout: bool = False  # Print path to stdout
    json_output: bool = False  # Output JSON metadata

    # Silent mode - for scripting
    silent: bool = False  # Disables clipboard, uses tmp dir

    def __post_init__(self):
        if self.silent:
            self.clipboard = False


@dataclass
class OutputResult:
    """Result of saving a stitched screenshot."""

    path: Path
    width: int
    height: int
    frames: int
    timestamp: str

    @classmethod
    def now(cls, path: Path, width: int, height: int, frames: int) -> "OutputResult":
        return cls(
            path=path,
            width=width,
            height=height,
            frames=frames,
            timestamp=datetime.now().isoformat(),
        )

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "width": self.width,
            "height": self.height,
            "frames": self.frames,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _pixbuf_from_rgba(data: bytes, width: int, height: int):
    import gi
    gi.require_version("GdkPixbuf", "2.0")
    from gi.repository import GdkPixbuf, GLib

    return GdkPixbuf.Pixbuf.new_from_bytes(
        GLib.Bytes.new(data),
        GdkPixbuf.Colorspace.RGB,
        True,
        8,
        width,
        height,
        width * 4,
    )


def _save_options(image_format: str, quality: int) -> tuple[str, list, list]:
    """Map a user format name to a GdkPixbuf saver type and options."""
    image_format = image_format.lower()
    if image_format in ("jpg", "jpeg"):
        return "jpeg", ["quality"], [str(quality)]
    if image_format == "webp":
        return "webp", ["quality"], [str(quality)]
    return "png", [], []


def encode_image(
    data: bytes,
    width: int,
    height: int,
    image_format: str = "png",
    quality: int = 90,
) -> bytes:
    """Encode a packed RGBA buffer to image file bytes."""
    pixbuf = _pixbuf_from_rgba(data, width, height)
    saver, keys, values = _save_options(image_format, quality)
    _, buffer = pixbuf.save_to_bufferv(saver, keys, values)
    return bytes(buffer)


class PixbufFileWriter:
    """Writes RGBA buffers to disk with GdkPixbuf."""

    def write_image_file(
        self,
        path: Path,
        data: bytes,
        width: int,
        height: int,
        image_format: str = "png",
        quality: int = 90,
    ) -> Path:
        """Save the image, returning the path actually written.

        WebP falls back to PNG when the saver is unavailable.
        """
        from gi.repository import GLib

        path.parent.mkdir(parents=True, exist_ok=True)
        pixbuf = _pixbuf_from_rgba(data, width, height)
        saver, keys, values = _save_options(image_format, quality)

        if saver == "webp":
            try:
                pixbuf.savev(str(path), saver, keys, values)
                return path
            except GLib.Error as e:
                log.warning("WebP not supported (%s), saving PNG", e.message)
                path = path.with_suffix(".png")
                saver, keys, values = "png", [], []

        pixbuf.savev(str(path), saver, keys, values)
        return path


class WlClipboardWriter:
    """Copies images to the Wayland clipboard with wl-copy."""

    def __init__(self, command: str = "wl-copy"):
        self.command = command

    def write_image(self, data: bytes, width: int, height: int) -> None:
        png = encode_image(data, width, height, "png")
        subprocess.run([self.command, "-t", "image/png"], input=png, check=True)
        log.debug("Copied to clipboard")


def resolve_output_path(
    options: OutputOptions,
    config: Optional[Config] = None,
) -> Path:
    """Pick the destination for a capture.

    Custom path, then the silent output dir, then the configured output dir.
    """
    config = config or get_config()
    if options.output_path:
        return options.output_path

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    name = f"scrollshot_{timestamp}.{options.output_format}"
    if options.silent:
        return config.silent_output_dir / name
    return config.output_dir / name


def publish(
    result: OutputResult,
    options: OutputOptions,
    config: Optional[Config] = None,
) -> None:
    """Announce a saved capture: event, save hooks and stdout output."""
    config = config or get_config()

    emit("artifact.created", {
        "file_path": str(result.path),
        "file_type": "scroll_screenshot",
        "metadata": {
            "width": result.width,
            "height": result.height,
            "frames": result.frames,
            "format": options.output_format,
            "timestamp": result.timestamp,
        },
    })

    # Runs asynchronously, won't block
    notify_save(result, config)

    if options.json_output:
        print(result.to_json(), flush=True)
    elif options.stdout:
        print(str(result.path), flush=True)
    else:
        log.info("Scroll screenshot saved: %s (%dx%d, %d frames)",
                 result.path, result.width, result.height, result.frames)
