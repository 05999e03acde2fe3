"""
Lifecycle management for a bitcoind regtest node running in Docker.

The Bitcoind class owns a Docker client and exposes blocking start() and
stop() calls over a single named container. Each call drives a coroutine to
completion on an event loop owned by the instance; Docker SDK calls run on a
single-worker executor owned by the same instance, so no call returns before
the Docker operations it issued have settled.

Typical lifecycle::

    bitcoind = Bitcoind.from_config(BitcoindConfig())
    bitcoind.start()   # removes any stale container, pulls if needed
    # ... run tests against http://localhost:18443 ...
    bitcoind.stop()
    bitcoind.close()

or, as a context manager::

    with Bitcoind.from_config(BitcoindConfig()) as bitcoind:
        bitcoind.start()
"""

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Coroutine, List, Optional, TypeVar

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from .config import (
    AppConfig,
    BitcoindConfig,
    BitcoindFlags,
    DockerConfig,
    LifecycleConfig,
    RpcConfig,
    format_amount,
    load_config,
)
from .errors import BitcoindError, DockerError, DockerUnavailableError, ImageHashMismatch, OtherError
from .image_utils import digest_matches, list_repo_digests, pull_arguments, qualify_digest
from .logging_config import get_logger, redact_command_args
from .thread_utils import docker_container_lock, register_cleanup_handler, unregister_cleanup_handler
from .validation import validate_container_name, validate_image_hash, validate_image_reference

logger = get_logger(__name__)

T = TypeVar('T')

RPC_PORT = 18443
DATA_DIR_ENV = "BITCOIN_DATA=/data"
NO_SUCH_IMAGE = "no such image"

# Transport failures (closed socket, read timeout) surface as requests exceptions
DOCKER_FAILURES = (DockerException, requests.exceptions.RequestException)


def build_command(rpc_config: RpcConfig, flags: BitcoindFlags) -> List[str]:
    """
    Compose the bitcoind launch arguments.

    This is the only place RPC credentials are unwrapped.

    Args:
        rpc_config: Credentials passed as -rpcuser/-rpcpassword
        flags: Fee, debug and mempool tunables

    Returns:
        Argument list handed to the container as its command
    """
    command = [
        "-regtest=1",
        "-printtoconsole",
        "-rpcallowip=0.0.0.0/0",
        "-rpcbind=0.0.0.0",
        f"-rpcuser={rpc_config.username.expose_secret()}",
        f"-rpcpassword={rpc_config.password.expose_secret()}",
        "-server=1",
        "-txindex=1",
        f"-debug={flags.debug}",
        f"-minrelaytxfee={format_amount(flags.min_relay_tx_fee)}",
        f"-blockmintxfee={format_amount(flags.block_min_tx_fee)}",
        f"-fallbackfee={format_amount(flags.fallback_fee)}",
    ]
    if flags.maxmempool is not None:
        command.append(f"-maxmempool={flags.maxmempool}")
    return command


def _is_missing_image(exc: Optional[BaseException]) -> bool:
    """True when a create failure means the image (or pinned digest) is not present locally."""
    if isinstance(exc, ImageNotFound):
        return True
    return exc is not None and NO_SUCH_IMAGE in str(exc).lower()


def _connect(docker_config: DockerConfig) -> docker.DockerClient:
    try:
        if docker_config.docker_host:
            return docker.DockerClient(base_url=docker_config.docker_host)
        return docker.from_env()
    except DockerException as exc:
        raise DockerUnavailableError(
            f"Could not connect to the Docker daemon: {exc}"
        ) from exc


class Bitcoind:
    """
    Manages a single named bitcoind regtest container.

    Instances are meant to be driven serially by one test thread. The
    container name is the exclusivity key; two managers using the same name
    will remove each other's containers.
    """

    def __init__(
        self,
        config: BitcoindConfig,
        rpc_config: RpcConfig,
        flags: Optional[BitcoindFlags] = None,
        lifecycle: Optional[LifecycleConfig] = None,
        docker_config: Optional[DockerConfig] = None,
        cleanup_on_exit: bool = False,
    ):
        """
        Create a manager and connect to Docker.

        Args:
            config: Container name, image and optional pinned digest
            rpc_config: RPC credentials forwarded to bitcoind
            flags: Launch flags (defaults applied when omitted)
            lifecycle: Start/stop timings (defaults applied when omitted)
            docker_config: Docker daemon address (environment defaults when omitted)
            cleanup_on_exit: Remove the container when the interpreter exits

        Raises:
            ValidationError: If the name, image, digest or a fee amount is malformed
            DockerUnavailableError: If no Docker connection can be made
        """
        self.container_name = validate_container_name(config.container_name)
        self.image = validate_image_reference(config.image)
        self.image_hash = validate_image_hash(config.hash) if config.hash else None
        self.qualified_hash = qualify_digest(self.image, self.image_hash) if self.image_hash else None
        self.rpc_config = rpc_config
        self.flags = flags or BitcoindFlags()
        self.lifecycle = lifecycle or LifecycleConfig()
        # Fee amounts finer than one satoshi are rejected before Docker is contacted
        self.build_command()

        self._client = _connect(docker_config or DockerConfig())
        self._loop = asyncio.new_event_loop()
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"bitcoind-{self.container_name}"
        )
        self._closed = False

        self._cleanup_handler: Optional[Callable[[], None]] = None
        if cleanup_on_exit:
            self._cleanup_handler = self._cleanup_on_exit
            register_cleanup_handler(self._cleanup_handler)

        self._warn_on_port_mismatch()

    @classmethod
    def from_config(cls, config: BitcoindConfig, flags: Optional[BitcoindFlags] = None, **kwargs: Any) -> "Bitcoind":
        """Create a manager using the RPC configuration embedded in config."""
        return cls(config, config.rpc_config, flags, **kwargs)

    @classmethod
    def from_app_config(cls, app_config: Optional[AppConfig] = None, **kwargs: Any) -> "Bitcoind":
        """Create a manager from the harness configuration (loaded from the environment when omitted)."""
        if app_config is None:
            app_config = load_config()
        return cls(
            app_config.bitcoind,
            app_config.bitcoind.rpc_config,
            flags=app_config.flags,
            lifecycle=app_config.lifecycle,
            docker_config=app_config.docker,
            **kwargs,
        )

    # -- public API ----------------------------------------------------------

    def start(self) -> None:
        """
        Start the bitcoind container.

        Any container already registered under the configured name is removed
        first. If the image is missing locally it is pulled, its digest is
        verified when one is pinned, and creation is retried once.

        Raises:
            DockerUnavailableError: If the Docker daemon does not answer a ping
            ImageHashMismatch: If the pulled image does not carry the pinned digest
            DockerError: For any other Docker API failure
        """
        with docker_container_lock(self.container_name):
            logger.info("Checking if Docker daemon is active")
            self._run(self._ping())

            logger.info("Starting bitcoind container %s", self.container_name)
            self._run(self._start())

    def stop(self) -> None:
        """
        Stop and remove the bitcoind container.

        Safe to call when no container exists.

        Raises:
            DockerError: If listing or removing containers fails
        """
        with docker_container_lock(self.container_name):
            logger.info("Stopping bitcoind container %s", self.container_name)
            self._run(self._internal_stop())

    def is_running(self) -> bool:
        """Whether a container with the configured name is registered with Docker."""
        with docker_container_lock(self.container_name):
            return self._run(self._is_running())

    def build_command(self) -> List[str]:
        """Launch arguments for this manager's credentials and flags."""
        return build_command(self.rpc_config, self.flags)

    def close(self) -> None:
        """Release the event loop, executor and Docker client. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._cleanup_handler is not None:
            unregister_cleanup_handler(self._cleanup_handler)
            self._cleanup_handler = None

        self._executor.shutdown(wait=True)
        self._loop.close()
        self._client.close()

    def __enter__(self) -> "Bitcoind":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        try:
            if self._closed:
                return
            if exc_type is None:
                self.stop()
                return
            # Keep the exception that is already propagating
            try:
                self.stop()
            except (BitcoindError, TimeoutError) as stop_exc:
                logger.error("Failed to stop %s after %s: %s", self.container_name, exc_type.__name__, stop_exc)
        finally:
            self.close()

    # -- scheduling ----------------------------------------------------------

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        if self._closed:
            coro.close()
            raise OtherError(f"Bitcoind manager for {self.container_name} is closed")
        return self._loop.run_until_complete(coro)

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))

    # -- lifecycle steps -----------------------------------------------------

    async def _ping(self) -> None:
        message = "Docker daemon is not running. Make sure to start it before running this test"
        try:
            answered = await self._call(self._client.ping)
        except DOCKER_FAILURES as exc:
            raise DockerUnavailableError(message) from exc
        # ping() is False when the daemon replies 200 with a body other than OK
        if not answered:
            raise DockerUnavailableError(message)

    async def _start(self) -> None:
        await self._internal_stop()

        try:
            await self._create_and_start_container()
        except DockerError as err:
            # Docker reports a missing tag and an unknown pinned digest the same way
            if not _is_missing_image(err.source):
                raise
            await self._pull_image()
            await self._verify_image_hash()
            await self._create_and_start_container()

        await asyncio.sleep(self.lifecycle.startup_delay)

    async def _internal_stop(self) -> None:
        if not await self._is_running():
            return

        logger.info("Container was running. Stopping bitcoind container")
        await self._remove_container(self.container_name)

        for _ in range(self.lifecycle.stop_poll_attempts):
            if not await self._is_running():
                break
            logger.info("Waiting for bitcoind container to stop")
            await asyncio.sleep(self.lifecycle.stop_poll_interval)
        else:
            logger.warning(
                "Container %s still listed after %d checks; continuing",
                self.container_name,
                self.lifecycle.stop_poll_attempts,
            )

    async def _is_running(self) -> bool:
        try:
            containers = await self._call(
                self._client.api.containers, all=True, filters={"name": self.container_name}
            )
        except DOCKER_FAILURES as exc:
            raise DockerError(str(exc), exc) from exc

        target = f"/{self.container_name}"
        return any(target in (container.get("Names") or []) for container in containers)

    async def _remove_container(self, container: str) -> None:
        try:
            await self._call(self._client.api.remove_container, container, force=True)
        except NotFound:
            logger.debug("Container %s was already gone", container)
        except APIError as exc:
            if exc.status_code == 409 and "already in progress" in str(exc):
                logger.debug("Removal of %s already in progress", container)
                return
            raise DockerError(str(exc), exc) from exc
        except DOCKER_FAILURES as exc:
            raise DockerError(str(exc), exc) from exc

    async def _pull_image(self) -> None:
        repository, tag = pull_arguments(self.image)
        logger.info("Image not found locally. Pulling image: %s:%s", repository, tag)
        try:
            await self._call(self._consume_pull, repository, tag)
        except DOCKER_FAILURES as exc:
            raise DockerError(str(exc), exc) from exc

    def _consume_pull(self, repository: str, tag: str) -> None:
        # Runs on the executor: the stream does blocking reads
        for event in self._client.api.pull(repository, tag=tag, stream=True, decode=True):
            if "error" in event:
                raise DockerError(f"pull of {repository}:{tag} failed: {event['error']}")
            status = event.get("status")
            if status:
                logger.debug("Progress: %s %s", status, event.get("progress", ""))

    async def _verify_image_hash(self) -> None:
        if self.qualified_hash is None:
            return

        try:
            attrs = await self._call(self._client.api.inspect_image, self.image)
        except DOCKER_FAILURES as exc:
            raise DockerError(str(exc), exc) from exc

        found = list_repo_digests(attrs)
        if not digest_matches(found, self.qualified_hash):
            logger.error("Image %s does not match pinned digest %s", self.image, self.qualified_hash)
            raise ImageHashMismatch(self.qualified_hash, found)

        logger.info("Image digest verified: %s", self.qualified_hash)

    async def _create_and_start_container(self) -> None:
        logger.info("Creating and starting bitcoind container")

        command = self.build_command()
        logger.debug("bitcoind arguments: %s", " ".join(redact_command_args(command)))

        api = self._client.api
        image = self.qualified_hash or self.image
        try:
            host_config = api.create_host_config(
                auto_remove=True,
                port_bindings={RPC_PORT: ("0.0.0.0", RPC_PORT)},
            )
            response = await self._call(
                api.create_container,
                image=image,
                name=self.container_name,
                command=command,
                environment=[DATA_DIR_ENV],
                ports=[RPC_PORT],
                host_config=host_config,
            )
        except DOCKER_FAILURES as exc:
            raise DockerError(str(exc), exc) from exc

        container_id = (response or {}).get("Id")
        if not container_id:
            raise OtherError(f"Docker returned no container id for {self.container_name}")

        try:
            await self._call(api.start, container=container_id)
        except DOCKER_FAILURES as exc:
            # Auto-remove only applies once a container has run
            await self._discard_container(container_id)
            raise DockerError(str(exc), exc) from exc

        logger.info("Started container %s (%s)", self.container_name, container_id[:12])

    async def _discard_container(self, container_id: str) -> None:
        try:
            await self._remove_container(container_id)
        except DockerError as exc:
            logger.warning("Could not remove unstarted container %s: %s", container_id[:12], exc)

    # -- helpers -------------------------------------------------------------

    def _warn_on_port_mismatch(self) -> None:
        url_port = self.rpc_config.url_port()
        if url_port is not None and url_port != RPC_PORT:
            logger.warning(
                "RPC URL names port %d but the container publishes %d; clients using the URL will not reach the node",
                url_port,
                RPC_PORT,
            )

    def _cleanup_on_exit(self) -> None:
        # Executor threads are already joined at interpreter exit, so call Docker directly
        self._cleanup_handler = None
        if self._closed:
            return
        try:
            self._client.api.remove_container(self.container_name, force=True)
            logger.info("Removed container %s at exit", self.container_name)
        except NotFound:
            logger.debug("Container %s was already gone at exit", self.container_name)
        except DOCKER_FAILURES as exc:
            logger.error("Failed to remove container %s at exit: %s", self.container_name, exc)
