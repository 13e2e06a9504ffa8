"""Interactive console multiplexed into the running server.

The console starts in passthrough: typed lines are ignored and the prompt is
empty. ``Tab`` switches to command entry (``>>> `` prompt); submitted lines
are then forwarded to the server as ``{"cli": line}``. ``Escape`` goes back
to passthrough. The server asks for a prompt redraw with ``{"prompt": true}``
once it has handled a command.
"""

from __future__ import annotations

from collections.abc import Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.key_binding import KeyBindings, KeyPressEvent

from zerver.cli.dev.logging import DevLogComponent, get_logger
from zerver.constants import COMMAND_PROMPT
from zerver.models import ConsoleMode
from zerver.utils import console

logger = get_logger(DevLogComponent.CONSOLE)


class ConsoleMultiplexer:
    """Mode state machine plus the prompt_toolkit session that drives it.

    Args:
        send_command: Delivers a command line to the server. Failures are
            the sender's business; the console never retries.
    """

    def __init__(self, send_command: Callable[[str], object]) -> None:
        self.mode: ConsoleMode = ConsoleMode.PASSTHROUGH
        self._send_command = send_command
        self._session: PromptSession[str] | None = None

    @property
    def prompt_marker(self) -> str:
        if self.mode is ConsoleMode.COMMAND_ENTRY:
            return COMMAND_PROMPT
        return ""

    def handle_key(self, key: str) -> bool:
        """Apply a key event. Returns True if the mode changed."""
        if self.mode is ConsoleMode.PASSTHROUGH and key == "tab":
            self.mode = ConsoleMode.COMMAND_ENTRY
        elif self.mode is ConsoleMode.COMMAND_ENTRY and key == "escape":
            self.mode = ConsoleMode.PASSTHROUGH
        else:
            return False
        self.redraw_prompt()
        return True

    def handle_line(self, line: str) -> None:
        if self.mode is not ConsoleMode.COMMAND_ENTRY:
            return
        if not line:
            self.redraw_prompt()
            return
        self._send_command(line)

    def handle_close(self) -> None:
        """Input ended; leave the terminal on a fresh line."""
        if self.mode is ConsoleMode.COMMAND_ENTRY:
            console.print()

    def redraw_prompt(self) -> None:
        if self._session is None:
            return
        app = self._session.app
        if app.is_running:
            app.invalidate()

    def key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("tab")
        def _(event: KeyPressEvent) -> None:
            self.handle_key("tab")

        @kb.add("escape", eager=True)
        def _(event: KeyPressEvent) -> None:
            self.handle_key("escape")

        return kb

    async def run(self) -> None:
        """Read terminal input until it is closed (EOF or Ctrl+C)."""
        self._session = PromptSession(
            message=lambda: self.prompt_marker,
            key_bindings=self.key_bindings(),
        )
        while True:
            try:
                line = await self._session.prompt_async()
            except (EOFError, KeyboardInterrupt):
                self.handle_close()
                logger.debug("console input closed")
                return
            self.handle_line(line)
