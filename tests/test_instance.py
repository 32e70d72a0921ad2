import os

import pytest

from scrollshot.config import Config
from scrollshot.instance import InstanceManager


@pytest.fixture
def config(tmp_path):
    return Config(lock_file=tmp_path / "run" / "scrollshot.lock")


class TestInstanceManager:

    def test_acquire_and_release(self, config):
        manager = InstanceManager(config)

        assert manager.acquire_lock()
        assert manager.locked
        assert config.lock_file.read_text() == str(os.getpid())
        assert manager.get_running_pid() == os.getpid()

        manager.release_lock()
        assert not manager.locked
        assert not config.lock_file.exists()
        assert manager.get_running_pid() is None

    def test_second_holder_is_refused(self, config):
        first = InstanceManager(config)
        second = InstanceManager(config)

        assert first.acquire_lock()
        try:
            assert not second.acquire_lock()
            assert not second.locked
            assert config.lock_file.read_text() == str(os.getpid())
        finally:
            first.release_lock()

        assert second.acquire_lock()
        second.release_lock()

    def test_stale_lock(self, config):
        config.lock_file.parent.mkdir(parents=True)
        config.lock_file.write_text("not-a-pid")
        manager = InstanceManager(config)

        assert manager.get_running_pid() is None
        assert not manager.signal_stop()
        manager.cleanup_stale_lock()
        assert not config.lock_file.exists()

    def test_does_not_signal_itself(self, config):
        manager = InstanceManager(config)
        manager.acquire_lock()
        try:
            assert not manager.signal_stop()
        finally:
            manager.release_lock()
