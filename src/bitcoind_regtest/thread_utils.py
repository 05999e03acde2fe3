"""
Thread safety utilities for Docker operations.

This module provides:
- A process-wide lock serializing start/stop of bitcoind containers
- Tracking of container names currently being operated on
- Cleanup handlers run at interpreter exit

Thread Safety Guarantees:
- Docker operations issued through docker_container_lock() are serialized
- Cleanup handler registration is atomic
- emergency_cleanup() runs every handler even if earlier ones fail

Example Usage:
    from bitcoind_regtest.thread_utils import docker_container_lock

    with docker_container_lock("bitcoin-regtest"):
        # Docker operations here are serialized within this process
        pass
"""

import atexit
import threading
from contextlib import contextmanager
from typing import Callable, Generator, List, Optional, Set

from .logging_config import get_logger

logger = get_logger(__name__)

# Global locks for shared resources
_docker_lock = threading.RLock()
_cleanup_handler_lock = threading.Lock()

# Global state for tracking resources
_active_containers: Set[str] = set()
_cleanup_handlers: List[Callable[[], None]] = []
_atexit_registered = False


def initialize_thread_safety() -> None:
    """
    Register the exit-time cleanup hook.

    Note:
        This function is idempotent and can be called multiple times safely.
    """
    global _atexit_registered
    with _cleanup_handler_lock:
        if _atexit_registered:
            return
        atexit.register(_emergency_cleanup)
        _atexit_registered = True

    logger.debug("Thread safety mechanisms initialized")


def _emergency_cleanup() -> None:
    """Emergency cleanup function called at exit."""
    try:
        emergency_cleanup()
    except Exception as exc:
        logger.error("Emergency cleanup failed: %s", exc)


def emergency_cleanup() -> None:
    """Run all registered cleanup handlers, newest first."""
    with _cleanup_handler_lock:
        handlers = list(reversed(_cleanup_handlers))
        _cleanup_handlers.clear()

    for handler in handlers:
        try:
            handler()
        except Exception as exc:
            logger.error("Error in cleanup handler: %s", exc)


@contextmanager
def docker_container_lock(container_name: Optional[str] = None) -> Generator[None, None, None]:
    """
    Context manager for thread-safe Docker container operations.

    Args:
        container_name: Optional container name tracked while the lock is held.

    Yields:
        None (use as a context manager for synchronization only)

    Raises:
        TimeoutError: If the lock cannot be acquired within 30 seconds
    """
    acquired_lock = _docker_lock.acquire(timeout=30.0)
    if not acquired_lock:
        raise TimeoutError("Failed to acquire Docker lock within timeout")

    try:
        if container_name:
            _active_containers.add(container_name)
        yield
    finally:
        if container_name:
            _active_containers.discard(container_name)
        _docker_lock.release()


def active_containers() -> Set[str]:
    """Names of containers with an operation in progress."""
    with _docker_lock:
        return set(_active_containers)


def register_cleanup_handler(handler: Callable[[], None]) -> None:
    """
    Register a cleanup handler to be called on exit.

    Args:
        handler: Callable to execute during cleanup
    """
    initialize_thread_safety()
    with _cleanup_handler_lock:
        _cleanup_handlers.append(handler)
        logger.debug("Registered cleanup handler")


def unregister_cleanup_handler(handler: Callable[[], None]) -> None:
    """
    Unregister a cleanup handler.

    Args:
        handler: Handler to remove
    """
    with _cleanup_handler_lock:
        try:
            _cleanup_handlers.remove(handler)
            logger.debug("Unregistered cleanup handler")
        except ValueError:
            logger.warning("Attempted to unregister non-existent cleanup handler")
