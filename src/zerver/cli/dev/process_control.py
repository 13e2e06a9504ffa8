"""Process tracking and stop helpers for the supervised server.

Design goals:
- Only signal processes we started (tracked by pid + create_time).
- Signal the whole process group so helpers spawned by the server go too.
- Never raise because the target is already gone.
"""

from __future__ import annotations

import os
import signal
import time
from typing import ClassVar

import psutil
from pydantic import BaseModel, ConfigDict

from zerver.cli.dev.logging import DevLogComponent, get_logger

logger = get_logger(DevLogComponent.PROCESS_CONTROL)


class TrackedProcess(BaseModel):
    """A process we started and are allowed to manage."""

    pid: int | None = None
    create_time: float | None = None
    pgid: int | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


def _get_pgid_safe(pid: int) -> int | None:
    # Windows doesn't have pgid.
    if os.name == "nt":
        return None
    try:
        return os.getpgid(pid)
    except OSError:
        return None


def track_process(pid: int) -> TrackedProcess | None:
    """Create a TrackedProcess for a running PID, recording create_time and pgid."""
    try:
        proc = psutil.Process(pid)
        return TrackedProcess(
            pid=pid,
            create_time=float(proc.create_time()),
            pgid=_get_pgid_safe(pid),
        )
    except (psutil.Error, OSError):
        return None


def validate_tracked(tp: TrackedProcess) -> psutil.Process | None:
    """Return a psutil.Process only if PID matches create_time (prevents PID reuse bugs)."""
    if tp.pid is None or tp.create_time is None:
        return None
    try:
        proc = psutil.Process(tp.pid)
        if abs(float(proc.create_time()) - float(tp.create_time)) > 0.001:
            return None
        return proc
    except (psutil.Error, OSError):
        return None


def _list_pgid_members(pgid: int) -> list[int]:
    """Return PIDs in a process group (POSIX only)."""
    if os.name == "nt":
        return []
    pids: list[int] = []
    for proc in psutil.process_iter(["pid"]):
        pid = int(proc.pid)
        if _get_pgid_safe(pid) == pgid:
            pids.append(pid)
    return pids


def _wait_for_pgid_empty(pgid: int, timeout: float, poll: float = 0.1) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if not _list_pgid_members(pgid):
            return True
        time.sleep(poll)
    return not _list_pgid_members(pgid)


def signal_tracked(tp: TrackedProcess, sig: signal.Signals = signal.SIGTERM) -> bool:
    """Send one signal to a tracked process (its group on POSIX).

    Returns False when there was nothing left to signal.
    """
    if tp.pgid is not None and os.name != "nt":
        try:
            os.killpg(tp.pgid, sig)
            return True
        except (ProcessLookupError, PermissionError):
            return False

    proc = validate_tracked(tp)
    if proc is None:
        return False
    try:
        if sig == getattr(signal, "SIGKILL", None):
            proc.kill()
        else:
            proc.terminate()
        return True
    except psutil.Error:
        return False


def _terminate_tree(root: psutil.Process, timeout: float) -> None:
    """Terminate a process tree (best-effort), children first."""
    try:
        children = root.children(recursive=True)
    except psutil.Error:
        children = []

    for c in children + [root]:
        try:
            c.terminate()
        except psutil.Error:
            pass

    _, alive = psutil.wait_procs(children + [root], timeout=timeout)
    for p in alive:
        try:
            p.kill()
        except psutil.Error:
            pass
    if alive:
        psutil.wait_procs(alive, timeout=max(0.5, timeout / 2))


def stop_tracked_process(
    tp: TrackedProcess,
    *,
    name: str,
    sigint_timeout: float = 1.0,
    sigterm_timeout: float = 1.5,
    sigkill_timeout: float = 1.0,
) -> None:
    """Stop a tracked process and its children.

    Behavior:
    - POSIX: signal process group (SIGINT -> SIGTERM -> SIGKILL).
    - Windows: terminate/kill the process tree.

    Blocking; call it through ``asyncio.to_thread`` from the event loop.
    """
    if tp.pgid is None or os.name == "nt":
        proc = validate_tracked(tp)
        if proc is None:
            return
        logger.debug(f"Stopping {name} pid={tp.pid}")
        _terminate_tree(proc, timeout=sigterm_timeout + sigkill_timeout)
        return

    logger.debug(f"Stopping {name} pgid={tp.pgid}")
    for sig, timeout in (
        (signal.SIGINT, sigint_timeout),
        (signal.SIGTERM, sigterm_timeout),
        (signal.SIGKILL, sigkill_timeout),
    ):
        if not signal_tracked(tp, sig):
            return
        if _wait_for_pgid_empty(tp.pgid, timeout):
            return

    # Last resort: if we still have a valid root process, kill its tree explicitly.
    proc = validate_tracked(tp)
    if proc is not None:
        _terminate_tree(proc, timeout=max(0.2, sigkill_timeout))
