"""Centralized logging for `zerver` dev mode (component loggers and CLI formatting)."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from rich.markup import escape
from typing_extensions import override

from zerver.utils import err_console


class DevLogComponent(str, Enum):
    """Where a log originated (used for prefixes and filtering)."""

    CONFIG = "config"
    SUPERVISOR = "supervisor"
    WATCHER = "watcher"
    CONSOLE = "console"
    CHANNEL = "channel"
    PROCESS_CONTROL = "process_control"


_COMPONENT_COLOR: dict[DevLogComponent, str] = {
    DevLogComponent.CONFIG: "magenta",
    DevLogComponent.SUPERVISOR: "bright_blue",
    DevLogComponent.WATCHER: "cyan",
    DevLogComponent.CONSOLE: "green",
    DevLogComponent.CHANNEL: "bright_black",
    DevLogComponent.PROCESS_CONTROL: "bright_black",
}

_PREFIX_WIDTH = max(len(c.value) for c in DevLogComponent) + 2


class ComponentLogHandler(logging.Handler):
    """Render records as ``time | [component] | message`` on stderr.

    Warnings and errors override the component color.
    """

    def __init__(self, component: DevLogComponent):
        super().__init__()
        self.component: DevLogComponent = component
        self.setFormatter(logging.Formatter("%(message)s"))

    def color_for(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            return "red"
        if record.levelno >= logging.WARNING:
            return "yellow"
        return _COMPONENT_COLOR.get(self.component, "white")

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            created = datetime.fromtimestamp(record.created)
            stamp = created.strftime("%H:%M:%S.%f")[:-3]
            prefix = escape(f"[{self.component.value}]".ljust(_PREFIX_WIDTH))
            color = self.color_for(record)
            for line in self.format(record).splitlines() or [""]:
                err_console.print(
                    f"{stamp} | [{color}]{prefix}[/] | {escape(line)}",
                    highlight=False,
                )
        except Exception:
            self.handleError(record)


def configure_dev_logging(*, verbose: bool = False) -> None:
    """Attach a component handler to every dev logger.

    Safe to call again: existing handlers are replaced and the level follows
    the latest ``verbose`` value (DEBUG when set, INFO otherwise).
    """
    level = logging.DEBUG if verbose else logging.INFO
    for component in DevLogComponent:
        logger = logging.getLogger(f"zerver.dev.{component.value}")
        logger.setLevel(level)
        logger.handlers.clear()
        logger.addHandler(ComponentLogHandler(component))
        logger.propagate = False


def get_logger(component: DevLogComponent) -> logging.Logger:
    """Get a dev logger for a component (do not call stdlib logging directly)."""
    return logging.getLogger(f"zerver.dev.{component.value}")
