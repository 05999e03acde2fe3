"""
Logging configuration for the bitcoind regtest harness.

This module provides centralized logging configuration with appropriate
log levels, formatting, and output destinations. Library code only asks for
loggers through get_logger(); handlers are installed by setup_logging().
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import List, Optional

_CREDENTIAL_PATTERN = re.compile(r"(-rpc(?:user|password)=)\S+")


class SecretFilter(logging.Filter):
    """Mask RPC credentials that appear in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _CREDENTIAL_PATTERN.sub(r"\1[REDACTED]", record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: _redact_arg(value) for key, value in record.args.items()
                }
            else:
                record.args = tuple(_redact_arg(arg) for arg in record.args)
        return True


def _redact_arg(value: object) -> object:
    if isinstance(value, str):
        return _CREDENTIAL_PATTERN.sub(r"\1[REDACTED]", value)
    return value


def redact_command_args(args: List[str]) -> List[str]:
    """Return a copy of launch arguments with RPC credentials masked."""
    redacted = []
    for arg in args:
        if arg.startswith(("-rpcuser=", "-rpcpassword=")):
            arg = arg.split("=", 1)[0] + "=[REDACTED]"
        redacted.append(arg)
    return redacted


def setup_logging(
    level: str = "INFO", log_file: Optional[str] = None, verbose: bool = False, quiet: bool = False
) -> logging.Logger:
    """
    Set up logging configuration for the harness.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path to write logs to
        verbose: Enable verbose output (DEBUG level)
        quiet: Suppress all output except errors

    Returns:
        Configured logger instance
    """
    if verbose:
        log_level = logging.DEBUG
    elif quiet:
        log_level = logging.ERROR
    else:
        log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger("bitcoind_regtest")
    logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if verbose:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    secret_filter = SecretFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(secret_filter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=10 * 1024 * 1024, backupCount=5  # 10MB
            )
            file_handler.setLevel(logging.DEBUG)  # Always log debug to file
            file_handler.setFormatter(formatter)
            file_handler.addFilter(secret_filter)
            logger.addHandler(file_handler)

            logger.info(f"Logging to file: {log_file}")
        except Exception as e:
            logger.warning(f"Could not set up file logging: {e}")

    logger.debug(
        f"bitcoind regtest harness logging at level: {logging.getLevelName(log_level)}"
    )

    return logger


def get_logger(name: str = "bitcoind_regtest") -> logging.Logger:
    """
    Get a logger instance for the specified name.

    Args:
        name: Logger name (will be prefixed with 'bitcoind_regtest.')

    Returns:
        Logger instance
    """
    if name == "bitcoind_regtest" or name.startswith("bitcoind_regtest."):
        return logging.getLogger(name)
    return logging.getLogger(f"bitcoind_regtest.{name}")


logger = get_logger()
