"""Tests for configuration resolution and the ConfigSnapshot invariants."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError
from typer import BadParameter

from zerver.cli.config import parse_env_config, resolve_config
from zerver.constants import DEFAULT_PORT
from zerver.models import ConfigSnapshot, FlagOverrides


class TestEnvParsing:
    """Tests for the ZERVER variable grammar."""

    def test_short_and_long_keys(self) -> None:
        settings = parse_env_config("d=true,refresh=true,l=false,b=true,host=api.local")
        assert settings == {
            "debug": True,
            "refresh": True,
            "logging": False,
            "verbose": True,
            "api_host": "api.local",
        }

    def test_invalid_values_warn_and_are_ignored(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="zerver.dev.config"):
            settings = parse_env_config("d=yes,port=abc,colour=blue,p=true")
        assert settings == {"production": True}
        messages = [r.getMessage() for r in caplog.records]
        assert "ignoring invalid env debug=yes" in messages
        assert "ignoring invalid env port=abc" in messages
        assert "ignoring invalid env colour=blue" in messages

    def test_malformed_fragments_are_skipped(self) -> None:
        assert parse_env_config("debug,port=9000,=") == {"port": 9000}


class TestResolveConfig:
    """Tests for defaults -> env -> flags -> directory precedence."""

    def test_defaults(self, tmp_path: Path) -> None:
        config = resolve_config(env={}, base_dir=tmp_path)
        assert config.port == DEFAULT_PORT
        assert config.api_dir == "zerver"
        assert config.cwd == tmp_path
        assert config.manifests == ()
        assert config.api_host is None
        assert not any(
            [config.debug, config.refresh, config.logging, config.production]
        )

    def test_port_env_variable_sets_default(self, tmp_path: Path) -> None:
        config = resolve_config(env={"PORT": "5000"}, base_dir=tmp_path)
        assert config.port == 5000

    def test_flag_overrides_env(self, tmp_path: Path) -> None:
        config = resolve_config(
            FlagOverrides(port="7000"),
            env={"ZERVER": "port=9000"},
            base_dir=tmp_path,
        )
        assert config.port == 7000

    def test_env_overrides_default(self, tmp_path: Path) -> None:
        config = resolve_config(
            env={"PORT": "5000", "ZERVER": "port=9000"}, base_dir=tmp_path
        )
        assert config.port == 9000

    def test_production_wins_over_debug(self, tmp_path: Path) -> None:
        config = resolve_config(
            FlagOverrides(production=True, debug=True, refresh=True, logging=True),
            env={},
            base_dir=tmp_path,
        )
        assert config.production is True
        assert (config.debug, config.refresh, config.logging) == (False, False, False)

    @pytest.mark.parametrize("flag", ["refresh", "logging"])
    def test_refresh_or_logging_imply_debug(self, tmp_path: Path, flag: str) -> None:
        config = resolve_config(FlagOverrides(**{flag: True}), env={}, base_dir=tmp_path)
        assert config.debug is True

    def test_debug_env_with_bad_port(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="zerver.dev.config"):
            config = resolve_config(
                env={"ZERVER": "d=true,port=abc"}, base_dir=tmp_path
            )
        assert config.debug is True
        assert config.port == DEFAULT_PORT
        assert any("port=abc" in r.getMessage() for r in caplog.records)

    @pytest.mark.parametrize("port", ["abc", "0", "-3", ""])
    def test_invalid_port_flag_is_fatal(self, tmp_path: Path, port: str) -> None:
        with pytest.raises(BadParameter, match="port must be an integer"):
            resolve_config(FlagOverrides(port=port), env={}, base_dir=tmp_path)

    def test_flags_for_dirs_manifests_and_host(self, tmp_path: Path) -> None:
        (tmp_path / "site").mkdir()
        config = resolve_config(
            FlagOverrides(
                zerver_dir="api",
                manifests=["cache.manifest", "app.manifest"],
                host="example.com",
                directory="site",
            ),
            env={"ZERVER": "host=ignored.local"},
            base_dir=tmp_path,
        )
        assert config.cwd == (tmp_path / "site").resolve()
        assert config.api_dir == "api"
        assert config.api_path == (tmp_path / "site").resolve() / "api"
        assert config.manifests == ("cache.manifest", "app.manifest")
        assert config.api_host == "example.com"


class TestConfigSnapshot:
    """Tests for the snapshot model itself."""

    def test_is_immutable(self) -> None:
        config = ConfigSnapshot()
        with pytest.raises(ValidationError):
            config.port = 1  # type: ignore[misc]

    def test_rejects_non_positive_port(self) -> None:
        with pytest.raises(ValidationError):
            ConfigSnapshot(port=0)

    def test_child_args(self, tmp_path: Path) -> None:
        config = ConfigSnapshot(
            port=7000,
            api_dir="zerver",
            logging=True,
            verbose=True,
            manifests=("a.manifest", "b.manifest"),
            cwd=tmp_path,
        )
        assert config.child_args() == [
            "7000",
            "zerver",
            "1",
            "0",
            "1",
            "1",
            "a.manifest,b.manifest",
            "0",
            "",
        ]

    def test_console_enabled_requires_logging(self) -> None:
        assert ConfigSnapshot(debug=True).console_enabled is False
        assert ConfigSnapshot(logging=True).console_enabled is True
