"""Tests for tracked-process signalling."""

from __future__ import annotations

import os
import subprocess
import sys
import threading

import pytest

from zerver.cli.dev.process_control import (
    TrackedProcess,
    signal_tracked,
    stop_tracked_process,
    track_process,
    validate_tracked,
)

pytestmark = pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX-only")


@pytest.fixture
def sleeper():
    proc = subprocess.Popen(
        [sys.executable, "-c", "import time; time.sleep(60)"],
        start_new_session=True,
    )
    yield proc
    if proc.poll() is None:
        proc.kill()
        proc.wait()


def test_track_and_stop(sleeper: subprocess.Popen) -> None:
    tp = track_process(sleeper.pid)
    assert tp is not None
    assert tp.pgid == sleeper.pid
    assert validate_tracked(tp) is not None

    # reap promptly, as the supervisor's event loop does
    waiter = threading.Thread(target=sleeper.wait)
    waiter.start()
    stop_tracked_process(tp, name="sleeper", sigint_timeout=2.0)
    waiter.join(timeout=5)

    assert sleeper.returncode is not None
    assert sleeper.returncode != 0


def test_signal_tracked_terminates_group(sleeper: subprocess.Popen) -> None:
    tp = track_process(sleeper.pid)
    assert tp is not None
    assert signal_tracked(tp) is True
    assert sleeper.wait(timeout=5) < 0


def test_untracked_process_is_left_alone() -> None:
    assert validate_tracked(TrackedProcess()) is None
    assert signal_tracked(TrackedProcess(pid=None)) is False
