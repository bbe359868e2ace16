"""Tests for logging setup."""

import logging
from typing import Iterator

import colorlog
import pytest

from sqldelta.log import get_logger, parse_level, setup_logging


@pytest.fixture
def restore_root() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestParseLevel:
    """Tests for parse_level function."""

    def test_names_and_numbers(self) -> None:
        """Test level names in any case and numeric levels."""
        assert parse_level("debug") == logging.DEBUG
        assert parse_level("WARNING") == logging.WARNING
        assert parse_level(15) == 15

    def test_unknown_level(self) -> None:
        """Test an unknown name is a config error."""
        with pytest.raises(SystemExit, match="unknown log level: chatty"):
            parse_level("chatty")


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_plain_handler(self, restore_root: logging.Logger) -> None:
        """Test one plain stderr handler without colors."""
        setup_logging("warning", use_colors=False)
        (handler,) = restore_root.handlers
        assert restore_root.level == logging.WARNING
        assert not isinstance(handler.formatter, colorlog.ColoredFormatter)

    def test_colored_handler(self, restore_root: logging.Logger) -> None:
        """Test colors use the colorlog formatter."""
        setup_logging(use_colors=True)
        (handler,) = restore_root.handlers
        assert isinstance(handler.formatter, colorlog.ColoredFormatter)

    def test_logs_go_to_stderr(self, restore_root: logging.Logger, capsys: pytest.CaptureFixture) -> None:
        """Test messages reach stderr and never stdout."""
        setup_logging("info", use_colors=False)
        get_logger("sqldelta.test").info("Loading data to orders ...")
        captured = capsys.readouterr()
        assert "Loading data to orders ..." in captured.err
        assert captured.out == ""
