"""
Docker Runtime
==============

Adapter over the Docker Engine API used by every codetainer service.

All methods are blocking; async callers run them with asyncio.to_thread.
Engine and transport exceptions are translated into ContainerRuntimeError
at this boundary.
"""

import logging
import socket
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import docker
from docker.errors import DockerException, ImageNotFound
from docker.utils.socket import demux_adaptor, frames_iter
from docker.utils.socket import read as socket_read
from requests.exceptions import RequestException

from ..config import CONTAINER_UTILS_PATH, DEFAULT_DOCKER_TIMEOUT, Config
from ..errors import ContainerRuntimeError, NotFoundError

logger = logging.getLogger(__name__)

RUNTIME_ERRORS = (DockerException, RequestException)

# Environment for interactive shells
TTY_ENVIRONMENT = {"TERM": "xterm-256color"}


@contextmanager
def engine_errors(action: str):
    """Translate Docker SDK failures into ContainerRuntimeError."""
    try:
        yield
    except RUNTIME_ERRORS as e:
        explanation = getattr(e, "explanation", None) or str(e)
        logger.warning(f"Docker {action} failed: {explanation}")
        raise ContainerRuntimeError(f"{action} failed: {explanation}") from e


class ExecSocket:
    """
    Raw response socket of an exec.

    The socket is owned here rather than by the SDK response, so closing it
    unblocks a reader in another thread and releases the connection.
    """

    def __init__(self, exec_id: str, sock):
        self.exec_id = exec_id
        self._sock = sock
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def _raw(self):
        # exec_start(socket=True) returns a SocketIO wrapping the real socket
        return getattr(self._sock, "_sock", self._sock)

    def close(self) -> None:
        """Close both directions. Idempotent."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._raw().shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"exec socket {self.exec_id[:12]} shutdown: {e}")
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"exec socket {self.exec_id[:12]} close: {e}")


class ExecStream(ExecSocket):
    """
    Output of a non-interactive exec.

    Without a tty the engine multiplexes stdout and stderr into framed
    chunks; iterating yields (stdout, stderr) pairs with one side None.
    """

    def __iter__(self) -> Iterator[tuple[bytes | None, bytes | None]]:
        for stream_id, data in frames_iter(self._sock, False):
            yield demux_adaptor(stream_id, data)


class TtyStream(ExecSocket):
    """
    Duplex socket of an interactive (tty) exec.

    With a tty the engine does not multiplex stdout/stderr, so bytes read
    here are exactly what the terminal produced.
    """

    def read(self, size: int = 4096) -> bytes:
        """Read up to size bytes; returns b"" at end of stream."""
        if self._closed:
            return b""
        try:
            data = socket_read(self._sock, size)
        except (OSError, ValueError):
            if self._closed:
                return b""
            raise
        return data or b""

    def write(self, data: bytes) -> None:
        if self._closed:
            raise OSError("tty stream is closed")
        self._raw().sendall(data)


class DockerRuntime:
    """
    Docker Engine client shared by the gateway, connections and lifecycle.

    The SDK client is created lazily so the service can start (and report
    unhealthy) while the engine is unreachable.
    """

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        base_url: str | None = None,
        timeout: int = DEFAULT_DOCKER_TIMEOUT,
        utils_dir: Path | None = None,
    ):
        self._client = client
        self._base_url = base_url
        self._timeout = timeout
        self.utils_dir = utils_dir
        self._client_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config) -> "DockerRuntime":
        return cls(
            base_url=config.docker_base_url,
            timeout=config.docker_timeout,
            utils_dir=config.utils_dir,
        )

    @property
    def client(self) -> docker.DockerClient:
        with self._client_lock:
            if self._client is None:
                with engine_errors("connect"):
                    if self._base_url:
                        self._client = docker.DockerClient(base_url=self._base_url, timeout=self._timeout)
                    else:
                        self._client = docker.from_env(timeout=self._timeout)
            return self._client

    def ping(self) -> bool:
        """Check if Docker is available and running."""
        try:
            return bool(self.client.ping())
        except (ContainerRuntimeError, *RUNTIME_ERRORS):
            return False

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    # -------------------------------------------------------------------------
    # Images and containers
    # -------------------------------------------------------------------------

    def inspect_image(self, reference: str) -> str:
        """
        Resolve an image reference to its engine id.

        Raises:
            NotFoundError: If the engine does not have the image.
        """
        try:
            with engine_errors("inspect image"):
                return self.client.images.get(reference).id
        except ContainerRuntimeError as e:
            if isinstance(e.__cause__, ImageNotFound):
                raise NotFoundError(f"Image '{reference}' not found in Docker") from e.__cause__
            raise

    def create_container(self, image: str, name: str) -> str:
        """Create (but don't start) a tty-enabled container, returning its id."""
        options = {
            "image": image,
            "name": name,
            "tty": True,
            "stdin_open": True,
        }
        if self.utils_dir is not None:
            options["volumes"] = {
                str(self.utils_dir): {"bind": CONTAINER_UTILS_PATH, "mode": "ro"},
            }

        with engine_errors("create container"):
            container = self.client.containers.create(**options)
        logger.info(f"Created container {name} ({container.id[:12]}) from {image}")
        return container.id

    def start_container(self, container_id: str) -> None:
        with engine_errors("start container"):
            self.client.api.start(container_id)

    def stop_container(self, container_id: str, timeout: int = 10) -> None:
        with engine_errors("stop container"):
            self.client.api.stop(container_id, timeout=timeout)

    def remove_container(self, container_id: str) -> None:
        with engine_errors("remove container"):
            self.client.api.remove_container(container_id, force=True)

    def resize_container_tty(self, container_id: str, height: int, width: int) -> None:
        """Resize the container's own tty (not an exec)."""
        with engine_errors("resize tty"):
            self.client.api.resize(container_id, height=height, width=width)

    def put_archive(self, container_id: str, path: str, data: bytes) -> None:
        """Extract a tar archive into path inside the container."""
        with engine_errors("upload archive"):
            ok = self.client.api.put_archive(container_id, path, data)
        if not ok:
            raise ContainerRuntimeError(f"upload archive failed: engine rejected archive for {path}")

    # -------------------------------------------------------------------------
    # Exec
    # -------------------------------------------------------------------------

    @contextmanager
    def exec_stream(self, container_id: str, argv: list[str]) -> Iterator[tuple[str, ExecStream]]:
        """
        Open a non-interactive exec and yield (exec_id, stream).

        The stream yields (stdout, stderr) chunk pairs. Its socket is closed
        when the context exits, whether or not the command failed, and may be
        closed early from another thread to abandon the command.
        """
        api = self.client.api
        with engine_errors("exec"):
            exec_id = api.exec_create(
                container_id,
                argv,
                stdout=True,
                stderr=True,
                stdin=False,
                tty=False,
            )["Id"]
            sock = api.exec_start(exec_id, socket=True)

        stream = ExecStream(exec_id, sock)
        try:
            yield exec_id, stream
        finally:
            stream.close()

    def exec_exit_code(self, exec_id: str) -> int | None:
        with engine_errors("exec inspect"):
            return self.client.api.exec_inspect(exec_id).get("ExitCode")

    def open_tty_exec(self, container_id: str, argv: list[str]) -> TtyStream:
        """Open an interactive exec (tty, stdin attached) and return its socket."""
        api = self.client.api
        with engine_errors("attach"):
            exec_id = api.exec_create(
                container_id,
                argv,
                stdin=True,
                stdout=True,
                stderr=True,
                tty=True,
                environment=TTY_ENVIRONMENT,
            )["Id"]
            sock = api.exec_start(exec_id, socket=True, tty=True)
        logger.debug(f"Opened tty exec {exec_id[:12]} in {container_id[:12]}")
        return TtyStream(exec_id, sock)
