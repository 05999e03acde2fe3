"""Tests for logging configuration module."""

import logging
import logging.handlers
from pathlib import Path
from unittest.mock import patch

import pytest

from bitcoind_regtest.logging_config import (
    SecretFilter,
    get_logger,
    redact_command_args,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Undo handler and level changes made by setup_logging()."""
    logger = logging.getLogger("bitcoind_regtest")
    saved_level = logger.level
    saved_handlers = logger.handlers[:]

    yield

    for handler in logger.handlers:
        if handler not in saved_handlers:
            handler.close()
    logger.handlers[:] = saved_handlers
    logger.setLevel(saved_level)


def make_record(msg, args=()):
    return logging.LogRecord("bitcoind_regtest.test", logging.INFO, __file__, 1, msg, args, None)


class TestSetupLogging:
    """Test logging setup functionality."""

    def test_setup_logging_default(self):
        """Test setup_logging with default parameters."""
        logger = setup_logging()

        assert logger.name == "bitcoind_regtest"
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1

    def test_setup_logging_verbose(self):
        """Test setup_logging with verbose=True."""
        logger = setup_logging(verbose=True)

        assert logger.level == logging.DEBUG
        console_handler = logger.handlers[0]
        assert "funcName" in console_handler.formatter._fmt

    def test_setup_logging_quiet(self):
        """Test setup_logging with quiet=True."""
        logger = setup_logging(quiet=True)

        assert logger.level == logging.ERROR

    def test_setup_logging_custom_level(self):
        """Test setup_logging with custom log level."""
        logger = setup_logging(level="warning")

        assert logger.level == logging.WARNING

    def test_setup_logging_invalid_level(self):
        """Test setup_logging with invalid log level defaults to INFO."""
        logger = setup_logging(level="INVALID")

        assert logger.level == logging.INFO

    def test_handlers_carry_secret_filter(self, tmp_path):
        """Test every installed handler masks credentials."""
        logger = setup_logging(log_file=str(tmp_path / "logs" / "harness.log"))

        assert len(logger.handlers) == 2
        for handler in logger.handlers:
            assert any(isinstance(f, SecretFilter) for f in handler.filters)

    def test_setup_logging_with_file(self, tmp_path):
        """Test setup_logging with log file."""
        log_file = tmp_path / "logs" / "harness.log"

        logger = setup_logging(log_file=str(log_file))

        file_handler = next(
            (h for h in logger.handlers if isinstance(h, logging.handlers.RotatingFileHandler)), None
        )
        assert file_handler is not None
        assert file_handler.maxBytes == 10 * 1024 * 1024  # 10MB
        assert file_handler.backupCount == 5
        assert log_file.parent.is_dir()

    def test_file_log_is_redacted(self, tmp_path):
        """Test credentials written through the logger never reach the file."""
        log_file = tmp_path / "harness.log"
        logger = setup_logging(log_file=str(log_file))

        get_logger("bitcoind").info("args: %s", "-rpcuser=alice -rpcpassword=hunter2")
        for handler in logger.handlers:
            handler.flush()

        content = log_file.read_text()
        assert "-rpcpassword=[REDACTED]" in content
        assert "hunter2" not in content
        assert "alice" not in content

    @patch("pathlib.Path.mkdir", side_effect=PermissionError("Permission denied"))
    def test_setup_logging_file_creation_error(self, mock_mkdir, tmp_path):
        """Test setup_logging keeps console logging when the log directory cannot be created."""
        logger = setup_logging(log_file=str(tmp_path / "nope" / "harness.log"))

        assert len(logger.handlers) == 1

    def test_setup_logging_removes_existing_handlers(self):
        """Test repeated setup does not stack handlers."""
        setup_logging()
        logger = setup_logging()

        assert len(logger.handlers) == 1


class TestSecretFilter:
    """Test credential masking in log records."""

    def test_masks_message(self):
        """Test credentials in the message itself are masked."""
        record = make_record("launching with -rpcuser=alice -rpcpassword=hunter2 -server=1")

        assert SecretFilter().filter(record) is True
        assert record.getMessage() == "launching with -rpcuser=[REDACTED] -rpcpassword=[REDACTED] -server=1"

    def test_masks_tuple_args(self):
        """Test credentials in format arguments are masked."""
        record = make_record("args: %s (%d)", ("-rpcpassword=hunter2", 3))

        SecretFilter().filter(record)

        assert record.getMessage() == "args: -rpcpassword=[REDACTED] (3)"

    def test_masks_dict_args(self):
        """Test credentials in mapping arguments are masked."""
        record = make_record("args: %(cmd)s", ({"cmd": "-rpcuser=alice"},))

        SecretFilter().filter(record)

        assert "alice" not in record.getMessage()

    def test_leaves_other_messages_alone(self):
        """Test unrelated messages pass through unchanged."""
        record = make_record("Started container %s", ("bitcoin-regtest",))

        SecretFilter().filter(record)

        assert record.getMessage() == "Started container bitcoin-regtest"


class TestRedactCommandArgs:
    """Test launch argument masking."""

    def test_credentials_masked(self):
        """Test -rpcuser and -rpcpassword values are replaced."""
        args = ["-regtest=1", "-rpcuser=alice", "-rpcpassword=pass word", "-server=1"]

        assert redact_command_args(args) == [
            "-regtest=1",
            "-rpcuser=[REDACTED]",
            "-rpcpassword=[REDACTED]",
            "-server=1",
        ]

    def test_input_not_modified(self):
        """Test the original list is left untouched."""
        args = ["-rpcpassword=hunter2"]
        redact_command_args(args)
        assert args == ["-rpcpassword=hunter2"]


class TestGetLogger:
    """Test get_logger functionality."""

    def test_get_logger_default(self):
        """Test get_logger with default name."""
        assert get_logger().name == "bitcoind_regtest"

    def test_get_logger_custom_name(self):
        """Test get_logger prefixes custom names."""
        assert get_logger("custom").name == "bitcoind_regtest.custom"

    def test_get_logger_module_name(self):
        """Test module names inside the package are not prefixed twice."""
        assert get_logger("bitcoind_regtest.bitcoind").name == "bitcoind_regtest.bitcoind"

    def test_get_logger_returns_same_instance(self):
        """Test get_logger returns the same instance for the same name."""
        assert get_logger("same") is get_logger("same")
