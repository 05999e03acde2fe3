"""
bitcoind Regtest Harness

Provisions, configures and tears down a Dockerized bitcoind regtest node for
integration-test suites. The node is exposed over RPC on port 18443.

Requirements:
- Python 3.9+
- Docker installed and running
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .bitcoind import RPC_PORT, Bitcoind, build_command
from .config import (
    AppConfig,
    BitcoindConfig,
    BitcoindFlags,
    DockerConfig,
    LifecycleConfig,
    Network,
    RpcConfig,
    Secret,
    load_config,
)
from .errors import (
    BitcoindError,
    DockerError,
    DockerUnavailableError,
    ImageHashMismatch,
    OtherError,
)
from .validation import ValidationError

__all__ = [
    "AppConfig",
    "Bitcoind",
    "BitcoindConfig",
    "BitcoindError",
    "BitcoindFlags",
    "DockerConfig",
    "DockerError",
    "DockerUnavailableError",
    "ImageHashMismatch",
    "LifecycleConfig",
    "Network",
    "OtherError",
    "RPC_PORT",
    "RpcConfig",
    "Secret",
    "ValidationError",
    "build_command",
    "load_config",
]
