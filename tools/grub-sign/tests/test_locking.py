"""Tests for the global lock and signal handling."""

import os
import signal
from pathlib import Path

import pytest

from grub_sign.errors import GrubSignError
from grub_sign.locking import exclusive_lock, exit_on_signals


class TestExclusiveLock:
    """Tests for exclusive_lock()."""

    def test_creates_lock_file(self, temp_dir: Path):
        """Test the lock file and its directory are created."""
        path = temp_dir / "run" / "grub-sign.lock"
        with exclusive_lock(path, timeout=1):
            assert path.exists()

    def test_second_holder_times_out(self, temp_dir: Path):
        """Test a concurrent operation gives up after the timeout."""
        path = temp_dir / "grub-sign.lock"
        with exclusive_lock(path, timeout=1):
            with pytest.raises(GrubSignError):
                with exclusive_lock(path, timeout=0):
                    pass

    def test_released_on_error(self, temp_dir: Path):
        """Test the lock is released when the block raises."""
        path = temp_dir / "grub-sign.lock"
        with pytest.raises(RuntimeError):
            with exclusive_lock(path, timeout=1):
                raise RuntimeError("boom")
        with exclusive_lock(path, timeout=0):
            pass


class TestExitOnSignals:
    """Tests for exit_on_signals()."""

    def test_handlers_restored(self):
        """Test previous handlers are put back."""
        before = signal.getsignal(signal.SIGHUP)
        with exit_on_signals():
            assert signal.getsignal(signal.SIGHUP) is not before
        assert signal.getsignal(signal.SIGHUP) is before

    def test_signal_becomes_system_exit(self):
        """Test SIGTERM unwinds with the conventional exit status."""
        with pytest.raises(SystemExit) as excinfo:
            with exit_on_signals():
                os.kill(os.getpid(), signal.SIGTERM)
        assert excinfo.value.code == 128 + signal.SIGTERM

    def test_cleanup_runs_on_signal(self, temp_dir: Path):
        """Test context managers inside the block still clean up."""
        path = temp_dir / "grub-sign.lock"
        with pytest.raises(SystemExit):
            with exit_on_signals():
                with exclusive_lock(path, timeout=1):
                    os.kill(os.getpid(), signal.SIGHUP)
        with exclusive_lock(path, timeout=0):
            pass
