"""
Structured event emitter.

Default: JSON lines to stderr (captured by journald, pipeable).
Extensible: call add_handler() to forward events elsewhere.

Event format:
    {"event_type": "...", "timestamp": "...", "source": {"tool": "..."}, "data": {...}}

Events are always single-line JSON on stderr, distinguishable from log lines.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], None]

EVENT_CATALOG: List[Dict[str, Any]] = [
    {
        "event_type": "config.resolved",
        "data_fields": ["config_path", "source"],
    },
    {
        "event_type": "operation.started",
        "data_fields": ["operation_type", "operation_id", "region"],
    },
    {
        "event_type": "session.initialized",
        "data_fields": ["generation", "region"],
    },
    {
        "event_type": "frame.stitched",
        "data_fields": [
            "generation", "frame", "width", "height",
            "offset", "confidence", "is_duplicate",
        ],
    },
    {
        "event_type": "artifact.created",
        "data_fields": ["file_path", "file_type", "metadata"],
    },
    {
        "event_type": "operation.completed",
        "data_fields": ["operation_type", "operation_id", "region", "outputs", "metadata"],
    },
    {
        "event_type": "session.cleared",
        "data_fields": ["generation"],
    },
    {
        "event_type": "error.handled",
        "data_fields": ["error_type", "message", "operation"],
    },
    {
        "event_type": "shutdown",
        "data_fields": [],
    },
]

_handlers: List[EventHandler] = []
_source: str = "scrollshot"
_stderr_enabled: bool = False


def configure(source: str, stderr: bool = True) -> None:
    """Set the source name and stderr output. Call once at startup.

    stderr output is off until configured, so library use stays quiet.
    """
    global _source, _stderr_enabled
    _source = source
    _stderr_enabled = stderr


def add_handler(handler: EventHandler) -> None:
    _handlers.append(handler)


def remove_handler(handler: EventHandler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


def emit(
    event_type: str,
    data: Dict[str, Any],
    source: Optional[str] = None,
) -> None:
    """Emit a structured event to stderr (if enabled) and every handler.

    Handler failures are logged and never reach the caller.
    """
    event = {
        "event_type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": {
            "tool": source or _source,
        },
        "data": data,
    }

    if _stderr_enabled:
        try:
            print(json.dumps(event, default=str), file=sys.stderr, flush=True)
        except (TypeError, ValueError, OSError) as exc:
            logger.debug("Could not write event %s: %s", event_type, exc)

    for handler in list(_handlers):
        try:
            handler(event)
        except Exception as exc:
            logger.debug("Event handler error: %s", exc)
