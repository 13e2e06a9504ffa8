"""Message channel between the supervisor and the server process.

The channel is a Unix socket pair. The child inherits its end and finds the
descriptor number in ``ZERVER_CHANNEL_FD``. Each message is one JSON object
on its own line:

- supervisor -> child: ``{"debugRefresh": true}``, ``{"cli": "<line>"}``
- child -> supervisor: ``{"prompt": true}``

Delivery is best-effort in both directions. The child may be exiting or
restarting at any moment, so a failed send is reported as ``False`` and
never raised.
"""

from __future__ import annotations

import asyncio
import json
import os
import socket
from collections.abc import AsyncIterator, Iterator, Mapping
from typing import Any

from pydantic import ValidationError

from zerver.cli.dev.logging import DevLogComponent, get_logger
from zerver.constants import CHANNEL_BUFFER_LIMIT, ENV_CHANNEL_FD_VAR
from zerver.models import ChannelMessage, ChildMessage

logger = get_logger(DevLogComponent.CHANNEL)


class MessageChannel:
    """Supervisor end of the channel, bound to the running event loop.

    Writes are never awaited. Once more than ``buffer_limit`` bytes are
    queued for a server that is not reading, further messages are dropped.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        buffer_limit: int = CHANNEL_BUFFER_LIMIT,
    ):
        self._reader = reader
        self._writer = writer
        self.buffer_limit = buffer_limit

    @classmethod
    async def open(
        cls, *, buffer_limit: int = CHANNEL_BUFFER_LIMIT
    ) -> tuple[MessageChannel, socket.socket]:
        """Create a socket pair and wrap our end in asyncio streams.

        Returns:
            Tuple of (channel, child_socket). The caller passes the child
            socket's descriptor to the new process and closes it afterwards.
        """
        parent_sock, child_sock = socket.socketpair()
        reader, writer = await asyncio.open_unix_connection(sock=parent_sock)
        return cls(reader, writer, buffer_limit=buffer_limit), child_sock

    @property
    def closed(self) -> bool:
        return self._writer.is_closing()

    def send(self, message: ChannelMessage) -> bool:
        """Queue a message for the child.

        Best-effort: returns False instead of raising when the child end is
        gone, the transport is already closed, or too much is still queued.
        """
        if self._writer.is_closing():
            return False
        if self._writer.transport.get_write_buffer_size() > self.buffer_limit:
            logger.debug(f"dropped {message!r}: server is not reading")
            return False
        try:
            self._writer.write(message.to_wire().encode() + b"\n")
        except (ConnectionError, OSError, RuntimeError) as e:
            logger.debug(f"dropped {message!r}: {e}")
            return False
        return True

    async def messages(self) -> AsyncIterator[ChildMessage]:
        """Yield messages from the child until it closes its end."""
        while True:
            try:
                line = await self._reader.readline()
            except (ConnectionError, OSError):
                return
            if not line:
                return
            line = line.strip()
            if not line:
                continue
            try:
                yield ChildMessage.model_validate_json(line)
            except ValidationError:
                logger.debug(f"ignoring malformed message from server: {line!r}")

    def close(self) -> None:
        if not self._writer.is_closing():
            self._writer.close()


class ServerChannel:
    """Child end of the channel, for servers written in Python.

    Blocking; run ``__iter__`` on a dedicated thread if the server has its
    own event loop.
    """

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._rfile = sock.makefile("r", encoding="utf-8", newline="\n")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ServerChannel | None:
        """Attach to the descriptor announced by the supervisor, if any."""
        if env is None:
            env = os.environ
        raw_fd = env.get(ENV_CHANNEL_FD_VAR)
        if not raw_fd:
            return None
        return cls(socket.socket(fileno=int(raw_fd)))

    def send(self, message: Mapping[str, Any]) -> bool:
        try:
            self._sock.sendall(json.dumps(dict(message)).encode() + b"\n")
        except OSError:
            return False
        return True

    def request_prompt(self) -> bool:
        """Ask the supervisor console to redraw its prompt."""
        return self.send({"prompt": True})

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for line in self._rfile:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                yield data

    def close(self) -> None:
        self._rfile.close()
        self._sock.close()
