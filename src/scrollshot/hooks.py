"""User hook scripts run after a scroll capture is saved.

Directory structure (hooks_dir resolved by platformdirs):
    <hooks_dir>/
    └── on_save.d/
        ├── 10-upload.sh
        └── 20-optimize.sh

Scripts run in sorted order, in the background. Each receives:
    path width height frames timestamp
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import Config
    from .output import OutputResult

log = logging.getLogger(__name__)

HOOK_CONTRACT = {
    "events": [
        {
            "name": "on_save",
            "args": ["output_path", "width", "height", "frames", "timestamp"],
            "description": "Called after a stitched screenshot is saved",
        }
    ]
}


def find_hooks(hooks_dir: Optional[Path], event: str) -> list[Path]:
    """Return the executable scripts for ``event``, sorted by name."""
    if not hooks_dir:
        return []

    event_dir = hooks_dir / f"{event}.d"
    if not event_dir.is_dir():
        return []

    scripts = []
    for script in sorted(event_dir.iterdir()):
        if not script.is_file() or script.name.startswith("."):
            continue
        if not script.stat().st_mode & 0o111:
            log.debug("Skipping non-executable: %s", script)
            continue
        scripts.append(script)
    return scripts


def run_hooks(hooks_dir: Optional[Path], event: str, *args) -> int:
    """Start every hook script for an event without waiting for it.

    Returns:
        Number of scripts started
    """
    started = 0
    for script in find_hooks(hooks_dir, event):
        try:
            subprocess.Popen(
                [str(script)] + [str(a) for a in args],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            started += 1
            log.debug("Hook executed: %s", script.name)
        except OSError as e:
            log.warning("Hook %s failed: %s", script.name, e)
    return started


def notify_save(result: "OutputResult", config: "Config") -> int:
    """Notify all on_save hooks of a saved capture."""
    return run_hooks(
        config.hooks_dir,
        "on_save",
        result.path,
        result.width,
        result.height,
        result.frames,
        result.timestamp,
    )
