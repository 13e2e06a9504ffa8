"""Centralized Pydantic models and enums for zerver."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from zerver.constants import DEFAULT_API_DIR, DEFAULT_PORT


# === Enums ===


class ConsoleMode(str, Enum):
    """Input mode of the interactive console."""

    PASSTHROUGH = "passthrough"
    COMMAND_ENTRY = "command_entry"


# === Configuration ===


class FlagOverrides(BaseModel):
    """Raw command-line layer, before it is merged over defaults and env.

    Boolean flags can only switch a setting on; ``None`` means "not given".
    """

    debug: bool = False
    refresh: bool = False
    logging: bool = False
    verbose: bool = False
    production: bool = False
    port: str | None = None
    host: str | None = None
    zerver_dir: str | None = None
    manifests: list[str] = Field(default_factory=list)
    directory: str | None = None


class ConfigSnapshot(BaseModel):
    """Immutable run configuration shared by every dev component.

    Production wins over the debug family; any of debug, refresh or logging
    implies debug.
    """

    port: int = Field(default=DEFAULT_PORT, gt=0)
    api_dir: str = DEFAULT_API_DIR
    debug: bool = False
    refresh: bool = False
    logging: bool = False
    verbose: bool = False
    production: bool = False
    manifests: tuple[str, ...] = ()
    api_host: str | None = None
    cwd: Path = Field(default_factory=Path.cwd)

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _apply_mode_precedence(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("production"):
            data["debug"] = False
            data["refresh"] = False
            data["logging"] = False
        elif data.get("debug") or data.get("refresh") or data.get("logging"):
            data["debug"] = True
            data["production"] = False
        return data

    @field_validator("cwd")
    @classmethod
    def _absolute_cwd(cls, value: Path) -> Path:
        return Path(os.path.abspath(value))

    @property
    def api_path(self) -> Path:
        """Absolute, normalized API directory."""
        return Path(os.path.normpath(self.cwd / self.api_dir))

    @property
    def console_enabled(self) -> bool:
        return self.debug and self.logging

    def child_args(self) -> list[str]:
        """Positional argument vector handed to the server process."""

        def flag(value: bool) -> str:
            return "1" if value else "0"

        return [
            str(self.port),
            self.api_dir,
            flag(self.debug),
            flag(self.refresh),
            flag(self.logging),
            flag(self.verbose),
            ",".join(self.manifests),
            flag(self.production),
            self.api_host or "",
        ]


# === Channel Messages ===


class ChannelMessage(BaseModel):
    """Base for messages written to the child; serialized with wire names."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True, populate_by_name=True
    )

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


class DebugRefreshMessage(ChannelMessage):
    """Asset change: the server should live-reload its clients."""

    debug_refresh: Literal[True] = Field(default=True, alias="debugRefresh")


class CliMessage(ChannelMessage):
    """A console command typed by the developer."""

    cli: str


class ChildMessage(BaseModel):
    """Anything the child sends back. Unknown keys are kept but ignored."""

    prompt: bool = False

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow")
