"""Error types raised by the scroll capture pipeline.

Every failure is scoped to the operation that raised it. Only
CaptureFailed is meant to be retried without resetting the session.
"""


class ScrollCaptureError(Exception):
    """Base class for scroll capture errors."""
    pass


class InvalidState(ScrollCaptureError):
    """Raised when an operation is not valid in the current session state."""
    pass


class AlreadyActive(InvalidState):
    """Raised by init() while a session is initialized or capturing."""
    pass


class NotInitialized(InvalidState):
    """Raised when an operation is invoked before init()."""
    pass


class SessionReplaced(InvalidState):
    """Raised when a session is cleared or replaced while a capture is in flight."""
    pass


class SizeMismatch(ScrollCaptureError):
    """Raised when a frame's width differs from the composite width."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Frame width {actual} does not match composite width {expected}")
        self.expected = expected
        self.actual = actual


class CaptureFailed(ScrollCaptureError):
    """Raised when the screen capture provider fails. Retryable."""
    pass


class EncodeFailed(ScrollCaptureError):
    """Raised when the composite cannot be encoded or written."""
    pass
