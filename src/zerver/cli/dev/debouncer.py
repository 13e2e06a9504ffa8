"""Turn bursts of file-change events into one refresh or one reload.

Every raw event replaces the pending change and schedules a check one quiet
period later. A check only acts if nothing newer arrived in the meantime.
Changes inside the API directory reload the server; anything else is an
asset change and only triggers a refresh message.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import ClassVar, Protocol

import watchfiles
from pydantic import BaseModel, ConfigDict

from zerver.cli.dev.logging import DevLogComponent, get_logger
from zerver.constants import CHANGE_QUIET_PERIOD, WATCH_GRACE_PERIOD

logger = get_logger(DevLogComponent.WATCHER)


class Scheduler(Protocol):
    """The parts of an event loop the debouncer needs."""

    def time(self) -> float: ...

    def call_later(
        self, delay: float, callback: Callable[..., object], *args: object
    ) -> object: ...


class ChangeKind(str, Enum):
    SERVER_SOURCE = "server_source"
    ASSET = "asset"


class PendingChange(BaseModel):
    """The debounce window in flight. Compared by identity, not value."""

    path: str
    timestamp: float

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


class ChangeDebouncer:
    """Coalesce raw change events and dispatch one classified action.

    Args:
        api_path: Absolute API directory; changes under it reload the server
        on_reload: Called for server-source changes
        on_refresh: Called for asset changes
        quiet_period: Seconds without events before acting
        grace_period: Seconds after ``start()`` during which events are ignored
        loop: Scheduler to use (defaults to the running event loop)
    """

    def __init__(
        self,
        api_path: Path,
        *,
        on_reload: Callable[[], object],
        on_refresh: Callable[[], object],
        quiet_period: float = CHANGE_QUIET_PERIOD,
        grace_period: float = WATCH_GRACE_PERIOD,
        loop: Scheduler | None = None,
    ) -> None:
        self.api_path = Path(os.path.normpath(os.path.abspath(api_path)))
        self.on_reload = on_reload
        self.on_refresh = on_refresh
        self.quiet_period = quiet_period
        self.grace_period = grace_period
        self._loop = loop
        self._armed = False
        self._pending: PendingChange | None = None

    @property
    def loop(self) -> Scheduler:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def pending(self) -> PendingChange | None:
        return self._pending

    def start(self) -> None:
        """Begin the grace period; events before it elapses are dropped."""
        self.loop.call_later(self.grace_period, self._arm)

    def _arm(self) -> None:
        self._armed = True

    def classify(self, path: str | Path) -> ChangeKind:
        candidate = Path(os.path.normpath(os.path.abspath(path)))
        if candidate.is_relative_to(self.api_path):
            return ChangeKind.SERVER_SOURCE
        return ChangeKind.ASSET

    def notify(self, path: str | Path) -> None:
        """Record a raw change event."""
        if not self._armed:
            return
        change = PendingChange(path=str(path), timestamp=self.loop.time())
        self._pending = change
        self.loop.call_later(self.quiet_period, self._check, change)

    def _check(self, change: PendingChange) -> None:
        if self._pending is not change:
            # superseded
            return
        self._pending = None

        if self.classify(change.path) is ChangeKind.SERVER_SOURCE:
            logger.debug(f"server source changed: {change.path}")
            self.on_reload()
        else:
            logger.debug(f"asset changed: {change.path}")
            self.on_refresh()


def order_batch(
    changes: set[tuple[watchfiles.Change, str]], debouncer: ChangeDebouncer
) -> list[str]:
    """Flatten one watchfiles batch into event order.

    A batch carries no ordering, so server-source paths go last: if a batch
    mixes both kinds, the server is reloaded rather than only refreshed.
    """
    return sorted(
        {path for _, path in changes},
        key=lambda p: (debouncer.classify(p) is ChangeKind.SERVER_SOURCE, p),
    )


async def watch_changes(
    root: Path,
    debouncer: ChangeDebouncer,
    *,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Feed every change under ``root`` into the debouncer until stopped."""
    debouncer.start()
    logger.debug(f"watching {root}")
    async for changes in watchfiles.awatch(
        root,
        watch_filter=watchfiles.DefaultFilter(),
        stop_event=stop_event,
    ):
        for path in order_batch(changes, debouncer):
            debouncer.notify(path)
