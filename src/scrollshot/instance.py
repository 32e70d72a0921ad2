"""Cross-process single capture enforcement.

Only one scroll capture may run at a time. The running capture holds an
exclusive lock on the lock file and records its PID there, so a second
invocation can ask it to stop (SIGUSR1) and save what it has.
"""

import fcntl
import logging
import os
import signal
from typing import Optional, TextIO

from .config import Config

log = logging.getLogger(__name__)

STOP_SIGNAL = signal.SIGUSR1


class InstanceManager:
    """Manages the capture lock file and the stop signal."""

    def __init__(self, config: Config):
        self.config = config
        self._lock_fd: Optional[TextIO] = None

    @property
    def locked(self) -> bool:
        return self._lock_fd is not None

    def acquire_lock(self) -> bool:
        """Try to acquire the lock file.

        Returns:
            True if lock was acquired (no other capture running),
            False if another capture holds it
        """
        lock_file = self.config.lock_file
        try:
            lock_file.parent.mkdir(parents=True, exist_ok=True)
            # 'a+' avoids truncating another holder's PID before we own the lock
            self._lock_fd = open(lock_file, "a+")
            fcntl.flock(self._lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            self._lock_fd.seek(0)
            self._lock_fd.truncate()
            pid = os.getpid()
            self._lock_fd.write(str(pid))
            self._lock_fd.flush()
            log.debug("Lock acquired, PID=%d", pid)
            return True
        except OSError as e:
            log.debug("Lock acquisition failed: %s", e)
            if self._lock_fd:
                self._lock_fd.close()
                self._lock_fd = None
            return False

    def release_lock(self) -> None:
        if self._lock_fd is None:
            return
        try:
            fcntl.flock(self._lock_fd.fileno(), fcntl.LOCK_UN)
            self._lock_fd.close()
        except OSError as e:
            log.debug("Could not release lock: %s", e)
        self._lock_fd = None
        self.config.lock_file.unlink(missing_ok=True)

    def get_running_pid(self) -> Optional[int]:
        """Return the PID of the running capture, if any."""
        lock_file = self.config.lock_file
        if not lock_file.exists():
            return None

        try:
            pid = int(lock_file.read_text().strip())
            os.kill(pid, 0)
            return pid
        except (ValueError, OSError):
            return None

    def signal_stop(self) -> bool:
        """Ask the running capture to finish and save.

        Returns:
            True if the signal was sent
        """
        pid = self.get_running_pid()
        if pid is None or pid == os.getpid():
            return False

        try:
            os.kill(pid, STOP_SIGNAL)
            log.debug("Sent stop signal to PID %d", pid)
            return True
        except OSError as e:
            log.debug("Failed to send signal: %s", e)
            return False

    def cleanup_stale_lock(self) -> None:
        """Remove the lock file if its process is gone."""
        if self.locked or self.get_running_pid() is not None:
            return
        self.config.lock_file.unlink(missing_ok=True)
