"""Wire supervisor, watcher and console together on one event loop."""

from __future__ import annotations

import asyncio
import contextlib
import importlib.util
import signal
from collections.abc import Callable

from zerver.cli.dev.logging import DevLogComponent, get_logger
from zerver.cli.dev.supervisor import Supervisor
from zerver.models import ConfigSnapshot

logger = get_logger(DevLogComponent.SUPERVISOR)

DEBUG_DEPENDENCIES = ("watchfiles", "prompt_toolkit")

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def missing_debug_dependencies() -> list[str]:
    """Names of the debug-mode packages that cannot be imported."""
    return [
        name for name in DEBUG_DEPENDENCIES if importlib.util.find_spec(name) is None
    ]


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, handler: Callable[[], None]
) -> list[signal.Signals]:
    installed: list[signal.Signals] = []
    for sig in _SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, handler)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            continue
        installed.append(sig)
    return installed


async def _cancel(task: asyncio.Task[None] | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def run_debug(config: ConfigSnapshot, supervisor: Supervisor) -> int:
    """Supervise with restarts, live change handling and (with logging) the console."""
    from zerver.cli.dev.debouncer import ChangeDebouncer, watch_changes

    console_task: asyncio.Task[None] | None = None
    tasks: set[asyncio.Task] = set()

    if config.console_enabled:
        from zerver.cli.dev.console import ConsoleMultiplexer

        console_mux = ConsoleMultiplexer(supervisor.send_command)
        supervisor.on_prompt = console_mux.redraw_prompt
        console_task = asyncio.create_task(console_mux.run())
        tasks.add(console_task)

    debouncer = ChangeDebouncer(
        config.api_path,
        on_reload=supervisor.reload,
        on_refresh=supervisor.refresh,
    )
    stop_event = asyncio.Event()
    watch_task = asyncio.create_task(
        watch_changes(config.cwd, debouncer, stop_event=stop_event)
    )
    supervisor_task = asyncio.create_task(supervisor.run(restart=True))
    tasks.update((watch_task, supervisor_task))

    logger.info(f"debug server on port {config.port}, watching {config.cwd}")

    status = 0
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        if watch_task in done and watch_task.exception() is not None:
            logger.error(f"file watcher failed: {watch_task.exception()}")
            status = 1
        supervisor.shutdown()
        code = await supervisor_task
        return status or code
    finally:
        stop_event.set()
        await _cancel(watch_task)
        await _cancel(console_task)
        await _cancel(supervisor_task)


async def run_supervisor(config: ConfigSnapshot) -> int:
    """Run until shutdown and return the process exit status.

    Outside debug mode the server is started once and its exit, clean or
    not, ends the supervisor with the same status.
    """
    supervisor = Supervisor(config)
    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, supervisor.shutdown)
    try:
        if not config.debug:
            return await supervisor.run(restart=False)
        return await run_debug(config, supervisor)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
