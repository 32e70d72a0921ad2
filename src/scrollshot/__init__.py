"""scrollshot: scrolling screenshot capture for Wayland.

- Captures a screen region repeatedly while its content scrolls
- Detects the overlap between consecutive captures
- Stitches one tall composite, saved to file and clipboard
- CLI with JSON events and save hooks
"""

__version__ = "1.0.0"
