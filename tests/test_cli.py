from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest
from typer.testing import CliRunner

from zerver.__main__ import app
from zerver.models import ConfigSnapshot

runner: CliRunner = CliRunner()


@pytest.fixture(autouse=True)
def configure_logging():
    # keep component loggers propagating so other tests can use caplog
    with patch("zerver.__main__.configure_dev_logging") as m:
        yield m


@pytest.fixture
def run_supervisor():
    with patch("zerver.cli.dev.core.run_supervisor", new=AsyncMock(return_value=0)) as m:
        yield m


@pytest.mark.parametrize("flag", ["-v", "--version"])
def test_version(flag: str) -> None:
    result = runner.invoke(app, [flag])
    assert result.exit_code == 0
    assert result.output.startswith("zerver v")


def test_invalid_port_flag(run_supervisor: AsyncMock) -> None:
    result = runner.invoke(app, ["--port", "abc"])
    assert result.exit_code == 2
    assert "port must be an integer" in result.output
    run_supervisor.assert_not_called()


def test_flags_reach_the_supervisor(
    tmp_path: Path, run_supervisor: AsyncMock, monkeypatch: pytest.MonkeyPatch
) -> None:
    (tmp_path / "site").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ZERVER", "port=9000,host=env.local")
    result = runner.invoke(
        app,
        [
            "site",
            "--port",
            "7000",
            "-p",
            "-d",
            "--zerver-dir",
            "api",
            "--manifest",
            "a.manifest",
            "--manifest",
            "b.manifest",
        ],
        catch_exceptions=False,
    )
    assert result.exit_code == 0
    config: ConfigSnapshot = run_supervisor.call_args.args[0]
    assert config.port == 7000
    assert config.production is True
    assert config.debug is False
    assert config.api_dir == "api"
    assert config.api_host == "env.local"
    assert config.manifests == ("a.manifest", "b.manifest")
    assert config.cwd == (tmp_path / "site").resolve()


def test_child_exit_code_is_propagated(run_supervisor: AsyncMock) -> None:
    run_supervisor.return_value = 3
    result = runner.invoke(app, [], env={"ZERVER": ""})
    assert result.exit_code == 3


def test_debug_requires_dev_dependencies(run_supervisor: AsyncMock) -> None:
    with patch(
        "zerver.cli.dev.core.missing_debug_dependencies",
        return_value=["watchfiles"],
    ):
        result = runner.invoke(app, ["--debug"], env={"ZERVER": ""})
    assert result.exit_code == 1
    assert "requires dev dependencies" in result.output
    run_supervisor.assert_not_called()


def test_verbose_from_env_raises_log_level(
    configure_logging: Mock, run_supervisor: AsyncMock
) -> None:
    result = runner.invoke(app, [], env={"ZERVER": "b=true"})
    assert result.exit_code == 0
    assert run_supervisor.call_args.args[0].verbose is True
    configure_logging.assert_called_with(verbose=True)


def test_verbose_flag_configures_logging_once(
    configure_logging: Mock, run_supervisor: AsyncMock
) -> None:
    result = runner.invoke(app, ["-b"], env={"ZERVER": ""})
    assert result.exit_code == 0
    configure_logging.assert_called_once_with(verbose=True)
