"""
Error types for the bitcoind regtest harness.

Error Hierarchy:
- BitcoindError (base exception)
  - DockerUnavailableError: Docker daemon cannot be reached
  - DockerError: Any other failure reported by the Docker API
  - ImageHashMismatch: Pulled image does not carry the pinned digest
  - OtherError: Conditions not covered by the classes above

Example Usage:
    from bitcoind_regtest.errors import ImageHashMismatch

    try:
        bitcoind.start()
    except ImageHashMismatch as e:
        print(f"Refusing to run image: expected {e.expected}, found {e.found}")
"""

from typing import List, Optional


class BitcoindError(Exception):
    """Base exception for bitcoind lifecycle errors."""
    pass


class DockerUnavailableError(BitcoindError):
    """Raised when the Docker daemon is not reachable."""
    pass


class DockerError(BitcoindError):
    """Raised when a Docker API call fails."""

    def __init__(self, message: str, source: Optional[Exception] = None):
        super().__init__(f"Docker error: {message}")
        self.source = source


class ImageHashMismatch(BitcoindError):
    """Raised when the pinned image digest is not among the image's repo digests."""

    def __init__(self, expected: str, found: List[str]):
        super().__init__(f"Image hash mismatch: expected {expected}, found {found}")
        self.expected = expected
        self.found = list(found)


class OtherError(BitcoindError):
    """Raised for failures that fit no other category."""

    def __init__(self, message: str):
        super().__init__(f"Other error: {message}")
