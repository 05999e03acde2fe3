"""
Configuration management for the bitcoind regtest harness.

This module provides the typed configuration consumed by the lifecycle
manager and a configuration system supporting:
- Environment variables with automatic type conversion
- .env files (via python-dotenv)
- Default values with validation
- Runtime configuration updates

Configuration Sources (in order of precedence):
1. Environment variables (BTC_* prefixed, plus DOCKER_HOST)
2. .env files (.env, .env.local)
3. Default values (lowest precedence)

Environment Variables:
- BTC_CONTAINER_NAME: Name of the bitcoind container
- BTC_IMAGE: Image reference to run (repository:tag)
- BTC_IMAGE_HASH: Optional pinned digest (sha256:<hex>)
- BTC_RPC_USER / BTC_RPC_PASSWORD / BTC_RPC_URL / BTC_RPC_WALLET / BTC_NETWORK
- BTC_MIN_RELAY_TX_FEE / BTC_BLOCK_MIN_TX_FEE / BTC_DEBUG_LEVEL / BTC_FALLBACK_FEE / BTC_MAX_MEMPOOL
- BTC_STARTUP_DELAY / BTC_STOP_POLL_ATTEMPTS / BTC_STOP_POLL_INTERVAL
- BTC_LOG_LEVEL / BTC_LOG_FILE
- DOCKER_HOST: Docker daemon address

Example Usage:
    from bitcoind_regtest.config import load_config

    config = load_config()
    print(config.bitcoind.container_name)
"""

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from dotenv import load_dotenv

from .logging_config import get_logger
from .validation import (
    ValidationError,
    validate_container_name,
    validate_image_hash,
    validate_image_reference,
    validate_rpc_url,
)

logger = get_logger(__name__)

REDACTED = "[REDACTED]"
SATOSHI = Decimal("0.00000001")


class Secret:
    """
    A string value that never shows up in reprs, summaries or logs.

    Call expose_secret() at the single point where the raw value is needed.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def expose_secret(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Secret({REDACTED})"

    def __str__(self) -> str:
        return REDACTED

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Secret):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)


class Network(str, Enum):
    """Bitcoin network the RPC client talks to."""
    BITCOIN = "bitcoin"
    TESTNET = "testnet"
    TESTNET4 = "testnet4"
    SIGNET = "signet"
    REGTEST = "regtest"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Network"]:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


@dataclass(frozen=True)
class RpcConfig:
    """RPC credentials forwarded to bitcoind; never interpreted here."""
    username: Secret = field(default_factory=lambda: Secret("foo"))
    password: Secret = field(default_factory=lambda: Secret("rpcpassword"))
    url: Secret = field(default_factory=lambda: Secret("http://localhost:18443"))
    wallet: str = "mywallet"
    network: Network = Network.REGTEST

    def url_port(self) -> Optional[int]:
        """Port named by the RPC URL, or None if the URL has none."""
        try:
            return urlparse(self.url.expose_secret()).port
        except ValueError:
            return None


@dataclass(frozen=True)
class BitcoindConfig:
    """Container-level configuration for the regtest node."""
    container_name: str = "bitcoin-regtest"
    image: str = "bitcoin/bitcoin:29.1"
    hash: Optional[str] = None  # sha256:<hex>
    rpc_config: RpcConfig = field(default_factory=RpcConfig)


@dataclass(frozen=True)
class BitcoindFlags:
    """bitcoind tunables turned into launch arguments."""
    min_relay_tx_fee: float = 0.00001
    block_min_tx_fee: float = 0.00001
    debug: int = 1
    fallback_fee: float = 0.0002
    maxmempool: Optional[int] = None  # MB


@dataclass
class LifecycleConfig:
    """Timings for start and stop."""
    startup_delay: float = 1.0  # seconds to wait after the container starts
    stop_poll_attempts: int = 10
    stop_poll_interval: float = 1.0  # seconds


@dataclass
class DockerConfig:
    """Docker-related configuration."""
    docker_host: Optional[str] = None  # None = docker.from_env() defaults


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Main harness configuration."""
    bitcoind: BitcoindConfig = field(default_factory=BitcoindConfig)
    flags: BitcoindFlags = field(default_factory=BitcoindFlags)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigManager:
    """Configuration manager with support for multiple sources."""

    def __init__(self):
        self.config = AppConfig()
        self._env_cache: Dict[str, Any] = {}
        self._loaded_env_files: List[Path] = []

    def load_from_env_file(self, env_file: Union[str, Path]) -> None:
        """Load configuration from .env file."""
        env_path = Path(env_file)

        if not env_path.exists():
            logger.debug(f"Environment file {env_path} does not exist, skipping")
            return

        logger.info(f"Loading configuration from {env_path}")
        load_dotenv(env_path)
        self._loaded_env_files.append(env_path)

    def load_from_env_vars(self) -> None:
        """Load configuration from environment variables."""
        logger.debug("Loading configuration from environment variables")

        rpc = self.config.bitcoind.rpc_config
        rpc = replace(
            rpc,
            username=self._get_env_var("BTC_RPC_USER", rpc.username, Secret),
            password=self._get_env_var("BTC_RPC_PASSWORD", rpc.password, Secret),
            url=self._get_env_var("BTC_RPC_URL", rpc.url, Secret),
            wallet=self._get_env_var("BTC_RPC_WALLET", rpc.wallet),
            network=self._get_env_var("BTC_NETWORK", rpc.network, Network),
        )

        bitcoind = self.config.bitcoind
        self.config.bitcoind = replace(
            bitcoind,
            container_name=self._get_env_var("BTC_CONTAINER_NAME", bitcoind.container_name),
            image=self._get_env_var("BTC_IMAGE", bitcoind.image),
            hash=self._get_env_var("BTC_IMAGE_HASH", bitcoind.hash),
            rpc_config=rpc,
        )

        flags = self.config.flags
        self.config.flags = replace(
            flags,
            min_relay_tx_fee=self._get_env_var("BTC_MIN_RELAY_TX_FEE", flags.min_relay_tx_fee, float),
            block_min_tx_fee=self._get_env_var("BTC_BLOCK_MIN_TX_FEE", flags.block_min_tx_fee, float),
            debug=self._get_env_var("BTC_DEBUG_LEVEL", flags.debug, int),
            fallback_fee=self._get_env_var("BTC_FALLBACK_FEE", flags.fallback_fee, float),
            maxmempool=self._get_env_var("BTC_MAX_MEMPOOL", flags.maxmempool, int),
        )

        # Lifecycle settings
        self.config.lifecycle.startup_delay = self._get_env_var("BTC_STARTUP_DELAY", self.config.lifecycle.startup_delay, float)
        self.config.lifecycle.stop_poll_attempts = self._get_env_var("BTC_STOP_POLL_ATTEMPTS", self.config.lifecycle.stop_poll_attempts, int)
        self.config.lifecycle.stop_poll_interval = self._get_env_var("BTC_STOP_POLL_INTERVAL", self.config.lifecycle.stop_poll_interval, float)

        # Docker settings
        self.config.docker.docker_host = self._get_env_var("DOCKER_HOST", self.config.docker.docker_host)

        # Logging settings
        self.config.logging.level = self._get_env_var("BTC_LOG_LEVEL", self.config.logging.level)
        self.config.logging.file = self._get_env_var("BTC_LOG_FILE", self.config.logging.file)

    def _get_env_var(self, name: str, default: Any, var_type: type = str) -> Any:
        """Get environment variable with type conversion."""
        value = os.environ.get(name)
        if value is None or value == "":
            return default

        # Cache the parsed value
        cache_key = f"{name}:{value}:{var_type.__name__}"
        if cache_key in self._env_cache:
            return self._env_cache[cache_key]

        try:
            if var_type == bool:
                lower_value = value.lower()
                if lower_value in ('true', '1', 'yes', 'on'):
                    parsed = True
                elif lower_value in ('false', '0', 'no', 'off'):
                    parsed = False
                else:
                    parsed = default
            elif var_type == int:
                parsed = int(value)
            elif var_type == float:
                parsed = float(value)
            else:
                parsed = var_type(value)

            self._env_cache[cache_key] = parsed
            return parsed

        except (ValueError, TypeError):
            # Secrets must not end up in the log, so only the name is reported
            logger.warning(f"Invalid value for {name}, using default")
            return default

    def validate_config(self) -> List[str]:
        """Validate the current configuration and return any errors."""
        errors = []
        bitcoind = self.config.bitcoind

        for validator, value in (
            (validate_container_name, bitcoind.container_name),
            (validate_image_reference, bitcoind.image),
            (validate_rpc_url, bitcoind.rpc_config.url.expose_secret()),
        ):
            try:
                validator(value)
            except ValidationError as e:
                errors.append(str(e))

        if bitcoind.hash is not None:
            try:
                validate_image_hash(bitcoind.hash)
            except ValidationError as e:
                errors.append(str(e))

        if not bitcoind.rpc_config.username.expose_secret():
            errors.append("RPC username cannot be empty")
        if not bitcoind.rpc_config.password.expose_secret():
            errors.append("RPC password cannot be empty")

        # Validate flags
        flags = self.config.flags
        if flags.min_relay_tx_fee < 0:
            errors.append("Minimum relay fee must be >= 0")
        if flags.block_min_tx_fee < 0:
            errors.append("Minimum block fee must be >= 0")
        if flags.fallback_fee < 0:
            errors.append("Fallback fee must be >= 0")
        for amount in (flags.min_relay_tx_fee, flags.block_min_tx_fee, flags.fallback_fee):
            try:
                format_amount(amount)
            except ValidationError as e:
                errors.append(str(e))
        if flags.debug < 0:
            errors.append("Debug level must be >= 0")
        if flags.maxmempool is not None and flags.maxmempool < 1:
            errors.append("Max mempool size must be >= 1 MB")

        # Validate lifecycle timings
        lifecycle = self.config.lifecycle
        if lifecycle.startup_delay < 0:
            errors.append("Startup delay must be >= 0")
        if lifecycle.stop_poll_attempts < 1:
            errors.append("Stop poll attempts must be >= 1")
        if lifecycle.stop_poll_interval < 0:
            errors.append("Stop poll interval must be >= 0")

        # Validate logging level
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.config.logging.level.upper() not in valid_log_levels:
            errors.append(f"Invalid log level '{self.config.logging.level}'. Valid options: {valid_log_levels}")

        return errors

    def get_summary(self) -> str:
        """Get a human-readable summary of the current configuration."""
        bitcoind = self.config.bitcoind
        flags = self.config.flags
        lines = [
            "bitcoind Regtest Harness Configuration",
            "=" * 40,
            f"Container: {bitcoind.container_name}",
            f"Image: {bitcoind.image}",
            f"Image Hash: {bitcoind.hash or 'not pinned'}",
            f"Network: {bitcoind.rpc_config.network.value}",
            f"RPC User: {bitcoind.rpc_config.username}",
            f"RPC Password: {bitcoind.rpc_config.password}",
            f"RPC URL: {bitcoind.rpc_config.url}",
            f"Wallet: {bitcoind.rpc_config.wallet}",
            f"Fees: minrelay={flags.min_relay_tx_fee} blockmin={flags.block_min_tx_fee} fallback={flags.fallback_fee}",
            f"Debug: {flags.debug}",
            f"Max Mempool: {flags.maxmempool if flags.maxmempool is not None else 'default'}",
            f"Log Level: {self.config.logging.level}",
        ]

        if self.config.logging.file:
            lines.append(f"Log File: {self.config.logging.file}")

        if self.config.docker.docker_host:
            lines.append(f"Docker Host: {self.config.docker.docker_host}")

        return "\n".join(lines)

    def save_to_env_file(self, env_file: Union[str, Path], include_comments: bool = True) -> None:
        """Save current configuration to .env file. The RPC password is never written."""
        env_path = Path(env_file)
        bitcoind = self.config.bitcoind
        rpc = bitcoind.rpc_config
        flags = self.config.flags
        lifecycle = self.config.lifecycle

        lines = []
        if include_comments:
            lines.extend([
                "# bitcoind Regtest Harness Configuration",
                "# Generated automatically - edit as needed",
                "",
            ])

        # Container settings
        lines.extend([
            f"BTC_CONTAINER_NAME={bitcoind.container_name}",
            f"BTC_IMAGE={bitcoind.image}",
            f"BTC_IMAGE_HASH={bitcoind.hash or ''}",
            "",
        ])

        # RPC settings
        lines.extend([
            f"BTC_RPC_USER={rpc.username.expose_secret()}",
            "# BTC_RPC_PASSWORD=",
            f"BTC_RPC_URL={rpc.url.expose_secret()}",
            f"BTC_RPC_WALLET={rpc.wallet}",
            f"BTC_NETWORK={rpc.network.value}",
            "",
        ])

        # Launch flags
        lines.extend([
            f"BTC_MIN_RELAY_TX_FEE={format_amount(flags.min_relay_tx_fee)}",
            f"BTC_BLOCK_MIN_TX_FEE={format_amount(flags.block_min_tx_fee)}",
            f"BTC_DEBUG_LEVEL={flags.debug}",
            f"BTC_FALLBACK_FEE={format_amount(flags.fallback_fee)}",
            f"BTC_MAX_MEMPOOL={flags.maxmempool if flags.maxmempool is not None else ''}",
            "",
        ])

        # Lifecycle settings
        lines.extend([
            f"BTC_STARTUP_DELAY={lifecycle.startup_delay}",
            f"BTC_STOP_POLL_ATTEMPTS={lifecycle.stop_poll_attempts}",
            f"BTC_STOP_POLL_INTERVAL={lifecycle.stop_poll_interval}",
            "",
        ])

        # Logging settings
        lines.extend([
            f"BTC_LOG_LEVEL={self.config.logging.level}",
            f"BTC_LOG_FILE={self.config.logging.file or ''}",
        ])

        env_path.write_text("\n".join(lines), encoding='utf-8')
        logger.info(f"Configuration saved to {env_path}")


def format_amount(value: float) -> str:
    """
    Format a BTC amount as a plain decimal string.

    bitcoind rejects scientific notation, so 0.00001 must not become 1e-05.

    Raises:
        ValidationError: If the amount is not finite or is finer than one satoshi
    """
    amount = Decimal(repr(value))
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value}")
    if amount != amount.quantize(SATOSHI):
        raise ValidationError(f"Amount {value} has more than 8 decimal places")
    return format(amount.normalize(), "f")


# Global configuration instance
config_manager = ConfigManager()


def load_config() -> AppConfig:
    """
    Load configuration from all sources with proper precedence.

    Precedence order (highest to lowest):
    1. Environment variables
    2. .env files
    3. Default values

    Returns:
        AppConfig: Fully loaded and validated configuration

    Raises:
        ValueError: If configuration validation fails
    """
    # python-dotenv never overrides variables that are already set
    config_files = [".env", ".env.local"]
    for config_file in config_files:
        config_manager.load_from_env_file(config_file)

    config_manager.load_from_env_vars()

    validation_errors = config_manager.validate_config()
    if validation_errors:
        logger.error("Configuration validation failed:")
        for error in validation_errors:
            logger.error(f"  - {error}")
        raise ValueError("Invalid configuration")

    logger.debug("Configuration loaded successfully")
    return config_manager.config


def get_config() -> AppConfig:
    """
    Get the current harness configuration.

    Returns:
        AppConfig: The current configuration instance
    """
    return config_manager.config


def update_config(updates: Dict[str, Any]) -> None:
    """
    Update configuration values at runtime.

    Only top-level configuration attributes can be updated this way.

    Args:
        updates: Dictionary of configuration key-value pairs to update

    Example:
        update_config({"flags": BitcoindFlags(maxmempool=5)})
    """
    for key, value in updates.items():
        if hasattr(config_manager.config, key):
            setattr(config_manager.config, key, value)
            logger.debug(f"Updated configuration: {key}")
        else:
            logger.warning(f"Unknown configuration key: {key}")


def reset_config() -> None:
    """
    Reset configuration to default values.

    Useful for testing or when a clean configuration state is needed.
    """
    config_manager.config = AppConfig()
    config_manager._env_cache.clear()
    config_manager._loaded_env_files.clear()
    logger.info("Configuration reset to defaults")
