"""
Pytest Configuration and Fixtures
=================================

Test fixtures for the Codetainer test suite.
Provides an isolated database, an in-memory stand-in for the Docker
runtime, fake WebSocket clients and a wired application.
"""

import asyncio
import itertools
import queue
import socket
import struct
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import WebSocketDisconnect

from codetainer.config import Config
from codetainer.context import build_context
from codetainer.errors import ContainerRuntimeError, NotFoundError
from codetainer.registry import CodetainerRegistry
from codetainer.schemas import Codetainer
from codetainer.services.runtime import ExecStream


# =============================================================================
# Runtime Fakes
# =============================================================================

def docker_frame(stream_type: int, data: bytes) -> bytes:
    """Encode a chunk the way the engine multiplexes non-tty exec output."""
    return struct.pack(">BxxxL", stream_type, len(data)) + data


def exec_socketpair(stdout: bytes, stderr: bytes, hang: bool = False):
    """
    Return (reader, writer) sockets carrying framed exec output.

    The writer end stays open when hang is set, so a reader blocks exactly
    as it would on a command that never finishes.
    """
    reader, writer = socket.socketpair()
    if stdout:
        writer.sendall(docker_frame(1, stdout))
    if stderr:
        writer.sendall(docker_frame(2, stderr))
    if not hang:
        writer.shutdown(socket.SHUT_WR)
    return reader, writer


class FakeTtyStream:
    """Duplex terminal stream backed by a queue."""

    _EOF = object()

    def __init__(self, exec_id: str):
        self.exec_id = exec_id
        self.closed = False
        self.written = bytearray()
        self._output = queue.Queue()
        self._lock = threading.Lock()

    def emit(self, data: bytes):
        """Produce terminal output."""
        self._output.put(data)

    def finish(self):
        """Simulate the shell exiting."""
        self._output.put(self._EOF)

    def read(self, size: int = 4096) -> bytes:
        if self.closed:
            return b""
        item = self._output.get()
        if item is self._EOF:
            return b""
        return item

    def write(self, data: bytes):
        if self.closed:
            raise OSError("tty stream is closed")
        with self._lock:
            self.written.extend(data)

    def close(self):
        self.closed = True
        self._output.put(self._EOF)


class FakeRuntime:
    """
    In-memory replacement for DockerRuntime.

    exec_outputs maps an argv tuple to (stdout, stderr, exit_code). tput
    answers from the geometry recorded by resize_container_tty.
    """

    def __init__(self):
        self.images: dict[str, str] = {}
        self.containers: dict[str, dict] = {}
        self.exec_outputs: dict[tuple, tuple[bytes, bytes, int]] = {}
        self.hanging_commands: set[tuple] = set()
        self.exec_calls: list[tuple[str, list[str]]] = []
        self.exec_streams: list[ExecStream] = []
        self.exec_released: list[threading.Event] = []
        self.resize_calls: list[tuple[str, int, int]] = []
        self.archives: list[tuple[str, str, bytes]] = []
        self.tty_streams: list[FakeTtyStream] = []
        self.tty_commands: list[list[str]] = []
        self.attach_error: Exception | None = None
        self.healthy = True
        self.closed = False
        self._exit_codes: dict[str, int] = {}
        self._ids = itertools.count(1)

    def add_image(self, reference: str) -> str:
        image_id = f"sha256:{uuid.uuid4().hex}"
        self.images[reference] = image_id
        return image_id

    def ping(self) -> bool:
        return self.healthy

    def close(self):
        self.closed = True

    def inspect_image(self, reference: str) -> str:
        if reference not in self.images:
            raise NotFoundError(f"Image '{reference}' not found in Docker")
        return self.images[reference]

    def create_container(self, image: str, name: str) -> str:
        container_id = uuid.uuid4().hex + uuid.uuid4().hex
        self.containers[container_id] = {
            "name": name,
            "image": image,
            "running": False,
            "height": 24,
            "width": 80,
        }
        return container_id

    def start_container(self, container_id: str):
        self.containers[container_id]["running"] = True

    def stop_container(self, container_id: str, timeout: int = 10):
        self.containers[container_id]["running"] = False

    def remove_container(self, container_id: str):
        self.containers.pop(container_id, None)

    def resize_container_tty(self, container_id: str, height: int, width: int):
        self.resize_calls.append((container_id, height, width))
        container = self.containers.setdefault(container_id, {"running": True})
        container["height"] = height
        container["width"] = width

    def put_archive(self, container_id: str, path: str, data: bytes):
        self.archives.append((container_id, path, data))

    def _output_for(self, container_id: str, argv: list[str]) -> tuple[bytes, bytes, int]:
        key = tuple(argv)
        if key in self.exec_outputs:
            return self.exec_outputs[key]
        geometry = self.containers.get(container_id, {})
        if key == ("tput", "cols"):
            return f"{geometry.get('width', 80)}\n".encode(), b"", 0
        if key == ("tput", "lines"):
            return f"{geometry.get('height', 24)}\n".encode(), b"", 0
        return b"", f"{argv[0]}: not found\n".encode(), 127

    @contextmanager
    def exec_stream(self, container_id: str, argv: list[str]):
        self.exec_calls.append((container_id, list(argv)))
        stdout, stderr, exit_code = self._output_for(container_id, argv)
        exec_id = f"exec-{next(self._ids)}"
        self._exit_codes[exec_id] = exit_code

        reader, writer = exec_socketpair(stdout, stderr, hang=tuple(argv) in self.hanging_commands)
        stream = ExecStream(exec_id, reader)
        released = threading.Event()
        self.exec_streams.append(stream)
        self.exec_released.append(released)
        try:
            yield exec_id, stream
        finally:
            stream.close()
            writer.close()
            released.set()

    def exec_exit_code(self, exec_id: str) -> int | None:
        return self._exit_codes.get(exec_id)

    def open_tty_exec(self, container_id: str, argv: list[str]) -> FakeTtyStream:
        if self.attach_error is not None:
            raise self.attach_error
        self.tty_commands.append(list(argv))
        stream = FakeTtyStream(f"tty-{next(self._ids)}")
        self.tty_streams.append(stream)
        return stream


# =============================================================================
# Client Fakes
# =============================================================================

class FakeClient:
    """Stand-in for an accepted fastapi.WebSocket."""

    _DISCONNECT = object()

    def __init__(self):
        self.sent: list[str] = []
        self.closed = False
        self.close_calls = 0
        self._incoming: asyncio.Queue | None = None

    @property
    def incoming(self) -> asyncio.Queue:
        if self._incoming is None:
            self._incoming = asyncio.Queue()
        return self._incoming

    def type(self, text: str):
        """Queue a text message as if typed by the user."""
        self.incoming.put_nowait({"type": "websocket.receive", "text": text})

    def type_bytes(self, data: bytes):
        """Queue a binary message."""
        self.incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def disconnect(self):
        self.incoming.put_nowait(self._DISCONNECT)

    async def receive(self) -> dict:
        item = await self.incoming.get()
        if item is self._DISCONNECT:
            self.closed = True
            return {"type": "websocket.disconnect", "code": 1000}
        return item

    async def send_text(self, data: str):
        if self.closed:
            raise WebSocketDisconnect(code=1006)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None):
        self.close_calls += 1
        self.closed = True
        self.incoming.put_nowait(self._DISCONNECT)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Create a temporary database path."""
    return tmp_path / "test_codetainer.db"


@pytest.fixture
def isolated_registry(temp_db_path: Path):
    """Provide a fresh registry database for each test."""
    registry = CodetainerRegistry(f"sqlite:///{temp_db_path.as_posix()}")
    yield registry
    registry.dispose()


# =============================================================================
# Runtime Fixtures
# =============================================================================

@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def exec_socket_factory():
    """Factory fixture for (reader, writer) sockets carrying framed exec output."""
    return exec_socketpair


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def client_factory():
    """Factory fixture creating independent fake clients."""
    return FakeClient


@pytest.fixture
def registered_image(isolated_registry, fake_runtime):
    """An image known to both the engine and the registry."""
    image_id = fake_runtime.add_image("ubuntu:22.04")
    return isolated_registry.register_image(image_id, "ubuntu", "22.04")


@pytest.fixture
def running_codetainer(isolated_registry, fake_runtime, registered_image):
    """A codetainer record whose container is running."""
    container_id = fake_runtime.create_container(registered_image.id, "devbox")
    fake_runtime.start_container(container_id)
    return isolated_registry.insert_codetainer(
        Codetainer(id=container_id, name="devbox", image_id=registered_image.id, status="running")
    )


@pytest.fixture
def eventually():
    """Poll an async-side predicate until it holds or the timeout expires."""
    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(interval)
    return _wait


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def test_config(temp_db_path: Path) -> Config:
    return Config(
        database_url=f"sqlite:///{temp_db_path.as_posix()}",
        exec_timeout=2.0,
        allow_external_access=True,
    )


@pytest.fixture
def test_context(test_config, fake_runtime, isolated_registry):
    return build_context(test_config, runtime=fake_runtime, registry=isolated_registry)


@pytest.fixture
def test_client(test_context):
    """Create a FastAPI test client over the fake runtime."""
    from fastapi.testclient import TestClient
    from codetainer.main import create_app

    app = create_app(context=test_context)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest_asyncio.fixture
async def async_test_client(test_context):
    """Create an async FastAPI test client (requests come from 127.0.0.1)."""
    from httpx import AsyncClient, ASGITransport
    from codetainer.main import create_app

    app = create_app(context=test_context)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def runtime_error() -> ContainerRuntimeError:
    return ContainerRuntimeError("attach failed: engine unavailable")
