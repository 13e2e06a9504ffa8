"""Tests for dev-mode component logging."""

from __future__ import annotations

import logging

import pytest

from zerver.cli.dev.logging import (
    ComponentLogHandler,
    DevLogComponent,
    configure_dev_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def restore_loggers():
    yield
    for component in DevLogComponent:
        logger = get_logger(component)
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


class TestConfigureDevLogging:
    def test_level_follows_verbose(self) -> None:
        configure_dev_logging(verbose=False)
        assert get_logger(DevLogComponent.SUPERVISOR).level == logging.INFO

        configure_dev_logging(verbose=True)
        logger = get_logger(DevLogComponent.SUPERVISOR)
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], ComponentLogHandler)


class TestComponentLogHandler:
    def test_lines_carry_component_prefix(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        configure_dev_logging(verbose=True)
        get_logger(DevLogComponent.WATCHER).debug("first\nsecond [x]")

        err = capsys.readouterr().err.splitlines()
        assert len(err) == 2
        assert all("| [watcher]" in line for line in err)
        assert err[0].endswith("| first")
        assert err[1].endswith("| second [x]")

    def test_warning_color(self) -> None:
        handler = ComponentLogHandler(DevLogComponent.CONFIG)
        record = logging.LogRecord(
            "zerver.dev.config", logging.WARNING, __file__, 1, "bad", None, None
        )
        assert handler.color_for(record) == "yellow"
        record.levelno = logging.INFO
        assert handler.color_for(record) == "magenta"
