"""Owns the server child process: start, observe exit, restart or stop.

One ``Supervisor`` holds at most one live ``ChildHandle``. ``run()`` is the
state machine::

    Starting -> Running -> Exited -> Restarting -> Starting
                                  \\-> Terminated

Crash restarts are immediate and unlimited. Once ``shutdown()`` has been
called no exit leads to a restart.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shlex
import signal
from collections.abc import Callable, Mapping, Sequence

from zerver.cli.dev.channel import MessageChannel
from zerver.cli.dev.logging import DevLogComponent, get_logger
from zerver.cli.dev.process_control import (
    TrackedProcess,
    signal_tracked,
    stop_tracked_process,
    track_process,
)
from zerver.constants import (
    DEFAULT_SERVER_COMMAND,
    ENV_CHANNEL_FD_VAR,
    ENV_SERVER_COMMAND_VAR,
    SHUTDOWN_GRACE_PERIOD,
)
from zerver.models import (
    ChannelMessage,
    CliMessage,
    ConfigSnapshot,
    DebugRefreshMessage,
)

logger = get_logger(DevLogComponent.SUPERVISOR)

SPAWN_RETRY_DELAY = 1.0


def server_command(env: Mapping[str, str] | None = None) -> list[str]:
    """Command line of the server, without the positional config arguments."""
    if env is None:
        env = os.environ
    return shlex.split(env.get(ENV_SERVER_COMMAND_VAR) or DEFAULT_SERVER_COMMAND)


def exit_status(returncode: int) -> int:
    """Translate an asyncio return code into a shell-style exit status."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class ChildHandle:
    """The one live server process and its message channel."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        channel: MessageChannel,
        *,
        tracked: TrackedProcess | None,
        restartable: bool,
    ):
        self.process = process
        self.channel = channel
        self.tracked = tracked
        self.restartable = restartable
        self.reader_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    def send(self, message: ChannelMessage) -> bool:
        """Best-effort delivery, see ``MessageChannel.send``."""
        return self.channel.send(message)

    def kill(self) -> bool:
        """Ask the server (and its process group) to terminate.

        Returns False if it was already gone.
        """
        if not self.running:
            return False
        if self.tracked is not None:
            return signal_tracked(self.tracked, signal.SIGTERM)
        try:
            self.process.terminate()
        except ProcessLookupError:
            return False
        return True

    async def wait(self) -> int:
        return await self.process.wait()

    async def force_stop(self) -> None:
        """Escalate until the server is gone (SIGINT, SIGTERM, then SIGKILL)."""
        if not self.running:
            return
        if self.tracked is not None:
            await asyncio.to_thread(stop_tracked_process, self.tracked, name="server")
        if self.running:
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()

    def close(self) -> None:
        if self.reader_task is not None:
            self.reader_task.cancel()
        self.channel.close()


class Supervisor:
    """Start the server, keep it alive, and relay messages to it.

    Args:
        config: Resolved run configuration
        command: Server command line (defaults to ``server_command()``)
        on_prompt: Called when the server asks for a prompt redraw. Only
            wired when logging is enabled.
        shutdown_grace: Seconds the server gets to exit after ``shutdown()``
            before it is stopped forcibly
    """

    def __init__(
        self,
        config: ConfigSnapshot,
        *,
        command: Sequence[str] | None = None,
        on_prompt: Callable[[], None] | None = None,
        shutdown_grace: float = SHUTDOWN_GRACE_PERIOD,
    ) -> None:
        self.config = config
        self.command: list[str] = (
            list(command) if command is not None else server_command()
        )
        self.on_prompt = on_prompt
        self.shutdown_grace = shutdown_grace
        self._child: ChildHandle | None = None
        self._shutdown = False
        self._stopping = asyncio.Event()

    @property
    def child(self) -> ChildHandle | None:
        return self._child

    @property
    def shutting_down(self) -> bool:
        return self._shutdown

    async def start(self, *, restartable: bool = True) -> ChildHandle:
        """Spawn a new server process; it replaces the previous handle."""
        channel, child_sock = await MessageChannel.open()
        fd = child_sock.fileno()
        env = {**os.environ, ENV_CHANNEL_FD_VAR: str(fd)}
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                *self.config.child_args(),
                cwd=self.config.cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                pass_fds=(fd,),
                start_new_session=True,
            )
        except OSError:
            channel.close()
            raise
        finally:
            child_sock.close()

        child = ChildHandle(
            process,
            channel,
            tracked=track_process(process.pid),
            restartable=restartable,
        )
        if self.config.logging and self.on_prompt is not None:
            child.reader_task = asyncio.create_task(self._relay_messages(child))
        self._child = child
        logger.debug(f"server started pid={process.pid} port={self.config.port}")
        return child

    async def _relay_messages(self, child: ChildHandle) -> None:
        async for message in child.channel.messages():
            if message.prompt and self.on_prompt is not None and child is self._child:
                self.on_prompt()

    async def run(self, *, restart: bool = True) -> int:
        """Run the server until shutdown (or until its first exit).

        Args:
            restart: Restart the server whenever it exits. When False any
                exit ends the run with the server's own exit status.

        Returns:
            Exit status for the supervisor process
        """
        try:
            while not self._shutdown:
                try:
                    child = await self.start(restartable=restart)
                except OSError as e:
                    logger.error(f"failed to start server {self.command!r}: {e}")
                    if not restart:
                        return 1
                    await asyncio.sleep(SPAWN_RETRY_DELAY)
                    continue

                if self._shutdown:
                    child.kill()

                returncode = await self._wait_child(child)
                child.close()

                if self._shutdown:
                    break
                if not child.restartable:
                    return exit_status(returncode)
                logger.debug(f"server exited with code {returncode}, restarting")
            return 0
        finally:
            await self._reap()

    async def _wait_child(self, child: ChildHandle) -> int:
        """Wait for the server to exit.

        Once shutdown starts the server gets ``shutdown_grace`` seconds to
        honor the SIGTERM, then it is stopped forcibly.
        """
        exited = asyncio.ensure_future(child.wait())
        stopping = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait(
                {exited, stopping}, return_when=asyncio.FIRST_COMPLETED
            )
            if not exited.done():
                try:
                    await asyncio.wait_for(
                        asyncio.shield(exited), timeout=self.shutdown_grace
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"server pid={child.pid} still running, stopping it forcibly"
                    )
                    await child.force_stop()
            return await exited
        finally:
            stopping.cancel()
            exited.cancel()

    async def _reap(self) -> None:
        child = self._child
        if child is None:
            return
        child.close()
        if child.running:
            await child.force_stop()
            await child.wait()

    def shutdown(self) -> None:
        """Stop for good: no restart after this, kill the current server.

        Idempotent. Kill failures are ignored, the server may already be
        exiting. A server still alive after the grace period is stopped
        forcibly by ``run()``.
        """
        if self._shutdown:
            return
        self._shutdown = True
        self._stopping.set()
        if self._child is not None:
            self._child.kill()

    def refresh(self) -> bool:
        """Tell the server that assets changed (no restart)."""
        if self._child is None:
            return False
        return self._child.send(DebugRefreshMessage())

    def reload(self) -> bool:
        """Kill the server so the run loop brings up a fresh one."""
        logger.info("reloading debug server")
        if self._child is None:
            return False
        return self._child.kill()

    def send_command(self, line: str) -> bool:
        """Forward a console command to the server (best-effort)."""
        if self._child is None:
            return False
        return self._child.send(CliMessage(cli=line))
