"""Scroll capture session state machine.

States::

    IDLE -> INITIALIZED -> CAPTURING <-> CAPTURING -> FINALIZED
      ^______________________ clear() ______________________|

The service owns a single active session. Each operation takes the
state lock once, performs one transition or read, and releases it.
capture() and handle_image() are additionally serialized by a pipeline
lock so frames are stitched in the order they were captured. clear()
only needs the state lock, so it is never held up by a slow capture;
the session generation number tells an in-flight capture that its frame
is stale.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union, TYPE_CHECKING

from .capture import CaptureError
from .emit import emit
from .errors import (
    AlreadyActive,
    CaptureFailed,
    EncodeFailed,
    InvalidState,
    NotInitialized,
    SessionReplaced,
)
from .frame import Frame, Region
from .output import OutputResult
from .stitch import OverlapResult, StitchSettings, merge
from .store import CompositeImage, FrameStore

if TYPE_CHECKING:
    from .capture import CaptureProvider
    from .config import Config
    from .output import ClipboardWriter, FileWriter

log = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    INITIALIZED = "initialized"
    CAPTURING = "capturing"
    FINALIZED = "finalized"


@dataclass
class CaptureSession:
    """One in-progress scroll capture."""

    region: Region
    generation: int
    store: FrameStore
    state: SessionState = SessionState.INITIALIZED
    frame_count: int = 0
    last_frame: Optional[Frame] = field(default=None, repr=False)


class ScrollCaptureService:
    """Drives init -> capture/handle_image -> save -> clear."""

    def __init__(
        self,
        provider: Optional["CaptureProvider"] = None,
        file_writer: Optional["FileWriter"] = None,
        clipboard_writer: Optional["ClipboardWriter"] = None,
        settings: Optional[StitchSettings] = None,
        initial_capacity_rows: int = 0,
        default_format: str = "png",
        default_quality: int = 90,
    ):
        self.provider = provider
        self.file_writer = file_writer
        self.clipboard_writer = clipboard_writer
        self.settings = settings or StitchSettings()
        self.initial_capacity_rows = initial_capacity_rows
        self.default_format = default_format
        self.default_quality = default_quality

        self._lock = threading.Lock()
        self._pipeline_lock = threading.Lock()
        self._session: Optional[CaptureSession] = None
        self._generation = 0

    @classmethod
    def from_config(cls, config: "Config") -> "ScrollCaptureService":
        """Build a service wired to the Wayland capture and output backends."""
        from .capture import WaylandCaptureProvider
        from .output import PixbufFileWriter, WlClipboardWriter

        return cls(
            provider=WaylandCaptureProvider(config),
            file_writer=PixbufFileWriter(),
            clipboard_writer=WlClipboardWriter(),
            settings=StitchSettings.from_config(config),
            initial_capacity_rows=config.initial_capacity_rows,
            default_format=config.default_format,
            default_quality=config.default_quality,
        )

    # Observers

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._session.state if self._session else SessionState.IDLE

    @property
    def frame_count(self) -> int:
        with self._lock:
            return self._session.frame_count if self._session else 0

    @property
    def region(self) -> Optional[Region]:
        with self._lock:
            return self._session.region if self._session else None

    def _require(self, operation: str, *states: SessionState) -> CaptureSession:
        """Return the active session if it is in one of ``states``. Caller holds the lock."""
        session = self._session
        if session is None:
            raise NotInitialized(f"{operation} called before init")
        if states and session.state not in states:
            raise InvalidState(f"{operation} is not valid while {session.state.value}")
        return session

    # Lifecycle

    def init(self, region: Region) -> None:
        """Start a new session bound to ``region``.

        Raises:
            AlreadyActive: If a session is initialized or capturing
        """
        with self._lock:
            session = self._session
            if session is not None and session.state in (
                SessionState.INITIALIZED,
                SessionState.CAPTURING,
            ):
                raise AlreadyActive(f"A session is already {session.state.value}")

            self._generation += 1
            self._session = CaptureSession(
                region=region,
                generation=self._generation,
                store=FrameStore(self.initial_capacity_rows),
            )
            log.debug("Session %d initialized for region %s", self._generation, region)
            emit("session.initialized", {
                "generation": self._generation,
                "region": str(region),
            })

    def capture(self) -> Frame:
        """Capture the bound region. The frame is not stitched.

        Raises:
            NotInitialized: Before init
            InvalidState: After finish
            CaptureFailed: If the capture provider failed (state unchanged)
            SessionReplaced: If clear() or init() ran while the capture was in flight
        """
        with self._pipeline_lock:
            with self._lock:
                session = self._require(
                    "capture", SessionState.INITIALIZED, SessionState.CAPTURING
                )
                generation = session.generation
                region = session.region

            if self.provider is None:
                raise CaptureFailed("No capture provider configured")
            try:
                frame = self.provider.capture_region(region)
            except CaptureError as e:
                log.warning("Capture of %s failed: %s", region, e)
                raise CaptureFailed(str(e)) from e

            with self._lock:
                session = self._session
                if session is None or session.generation != generation:
                    log.debug("Discarding frame from stale session %d", generation)
                    raise SessionReplaced("Session changed while capture was in flight")
                session = self._require(
                    "capture", SessionState.INITIALIZED, SessionState.CAPTURING
                )
                session.state = SessionState.CAPTURING
            return frame

    def handle_image(self, frame: Frame) -> OverlapResult:
        """Stitch ``frame`` onto the composite.

        A frame pixel-identical to the last appended one is ignored and
        reported as a duplicate.

        Raises:
            NotInitialized: Before init
            InvalidState: After finish
            SizeMismatch: If the frame width differs from the composite (no change)
        """
        with self._pipeline_lock, self._lock:
            session = self._require(
                "handle_image", SessionState.INITIALIZED, SessionState.CAPTURING
            )
            if session.last_frame is not None and session.last_frame.same_pixels(frame):
                log.debug("Ignoring repeated frame")
                return OverlapResult(offset=frame.height, confidence=1.0, is_duplicate=True)

            result = merge(session.store, frame, self.settings)
            session.state = SessionState.CAPTURING
            session.frame_count += 1
            if not result.is_duplicate:
                session.last_frame = frame

            width, height = session.store.current_size()
            emit("frame.stitched", {
                "generation": session.generation,
                "frame": session.frame_count,
                "width": width,
                "height": height,
                **result.to_dict(),
            })
            return result

    def finish(self) -> None:
        """Mark the capture complete. Saving remains possible."""
        with self._lock:
            session = self._require(
                "finish", SessionState.CAPTURING, SessionState.FINALIZED
            )
            session.state = SessionState.FINALIZED

    def clear(self) -> None:
        """Drop the session and its buffer. Always succeeds."""
        with self._lock:
            if self._session is not None:
                self._session.store.reset()
                log.debug("Session %d cleared", self._session.generation)
            self._session = None
            self._generation += 1
            emit("session.cleared", {"generation": self._generation})

    # Reads

    def get_size(self) -> tuple[int, int]:
        """Return (width, height) of the composite, (0, 0) when idle."""
        with self._lock:
            if self._session is None:
                return 0, 0
            return self._session.store.current_size()

    def get_image_data(self, tail_rows: Optional[int] = None) -> CompositeImage:
        """Return the composite, or only its last ``tail_rows`` rows."""
        with self._lock:
            store = self._require("get_image_data").store
            if tail_rows is None:
                return store.snapshot()
            return CompositeImage(store.tail(max(0, tail_rows)))

    def _saveable_image(self, operation: str) -> tuple[CaptureSession, CompositeImage]:
        session = self._require(operation, SessionState.CAPTURING, SessionState.FINALIZED)
        image = session.store.snapshot()
        if image.height == 0:
            raise EncodeFailed("Composite image is empty")
        return session, image

    def save_to_file(
        self,
        path: Union[str, Path],
        image_format: Optional[str] = None,
        quality: Optional[int] = None,
    ) -> OutputResult:
        """Encode the composite to ``path``. Does not change state.

        Raises:
            NotInitialized / InvalidState: Outside CAPTURING or FINALIZED
            EncodeFailed: If the composite is empty or the writer failed
        """
        with self._lock:
            session, image = self._saveable_image("save_to_file")
            if self.file_writer is None:
                raise EncodeFailed("No file writer configured")

            image_format = (image_format or self.default_format).lower()
            quality = quality if quality is not None else self.default_quality
            try:
                final_path = self.file_writer.write_image_file(
                    Path(path), image.to_bytes(), image.width, image.height,
                    image_format, quality,
                )
            except Exception as e:
                raise EncodeFailed(f"Could not write {path}: {e}") from e

            log.debug("Saved %dx%d composite to %s", image.width, image.height, final_path)
            return OutputResult.now(
                path=Path(final_path),
                width=image.width,
                height=image.height,
                frames=session.frame_count,
            )

    def save_to_clipboard(self) -> tuple[int, int]:
        """Copy the composite to the clipboard and return its size.

        Raises:
            NotInitialized / InvalidState: Outside CAPTURING or FINALIZED
            EncodeFailed: If the composite is empty or the writer failed
        """
        with self._lock:
            _, image = self._saveable_image("save_to_clipboard")
            if self.clipboard_writer is None:
                raise EncodeFailed("No clipboard writer configured")
            try:
                self.clipboard_writer.write_image(image.to_bytes(), image.width, image.height)
            except Exception as e:
                raise EncodeFailed(f"Could not copy to clipboard: {e}") from e
            log.debug("Copied %dx%d composite to clipboard", image.width, image.height)
            return image.size
