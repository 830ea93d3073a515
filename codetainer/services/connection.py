"""
Container Connection
====================

Bridges one client WebSocket to one container's interactive terminal.

Two tasks forward data for the lifetime of the attachment:
- client -> container: every text or binary message is written verbatim
  to the exec's stdin
- container -> client: every chunk of terminal output is sent to the client

The bridge ends when the client disconnects, the container's output reaches
end of stream, or the exec stream fails. Either way both sides are closed
and the connection never restarts.

State machine: idle -> attaching -> attached -> closed
"""

import asyncio
import codecs
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Protocol, Sequence

from fastapi import WebSocketDisconnect

from ..config import DEFAULT_SHELL
from ..errors import ConflictError, NotAttachedError, TransportError
from .runtime import DockerRuntime, TtyStream

logger = logging.getLogger(__name__)

# Bytes read from the terminal per chunk
READ_CHUNK_SIZE = 4096


class ClientEndpoint(Protocol):
    """The subset of fastapi.WebSocket a connection uses."""

    async def receive(self) -> dict: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class ConnectionState(str, Enum):
    IDLE = "idle"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    CLOSED = "closed"


@dataclass(frozen=True)
class Session:
    """Live pairing of a client endpoint with a container's tty exec."""
    container_id: str
    client: ClientEndpoint
    exec_id: str


class ContainerConnection:
    """A single interactive attachment to a container."""

    def __init__(
        self,
        container_id: str,
        client: ClientEndpoint,
        runtime: DockerRuntime,
        command: Sequence[str] = DEFAULT_SHELL,
        on_close: Callable[["ContainerConnection"], Awaitable[None]] | None = None,
    ):
        self.container_id = container_id
        self.client = client
        self.runtime = runtime
        self.command = list(command)
        self._on_close = on_close

        self._state = ConnectionState.IDLE
        self._stream: TtyStream | None = None
        self._input_lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._supervisor: asyncio.Task | None = None

        self.started_at: datetime | None = None
        self.termination_reason: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Session | None:
        if self._state is not ConnectionState.ATTACHED or self._stream is None:
            return None
        return Session(self.container_id, self.client, self._stream.exec_id)

    async def start(self, greeting: str | None = None) -> None:
        """
        Open the tty exec and begin forwarding in both directions.

        Returns once the bridge is established.

        Args:
            greeting: Optional text sent to the client before any terminal output

        Raises:
            ConflictError: If the connection was already started.
            ContainerRuntimeError: If the engine refused the exec.
            TransportError: If either side went away while attaching.
        """
        if self._state is not ConnectionState.IDLE:
            raise ConflictError(f"Connection to {self.container_id} is already {self._state.value}")

        self._state = ConnectionState.ATTACHING
        logger.info(f"Attaching to container {self.container_id[:12]}")

        try:
            stream = await asyncio.to_thread(self.runtime.open_tty_exec, self.container_id, self.command)
        except Exception:
            self._abort("attach failed")
            raise

        if greeting is not None and self._state is ConnectionState.ATTACHING:
            try:
                await self.client.send_text(greeting)
            except (RuntimeError, OSError, WebSocketDisconnect) as e:
                stream.close()
                self._abort("client closed")
                raise TransportError(f"Client left while attaching to {self.container_id}: {e}") from e

        if self._state is ConnectionState.CLOSED:
            # Detached while the exec was being opened
            stream.close()
            raise TransportError(f"Connection to {self.container_id} closed while attaching")

        self._stream = stream
        self._state = ConnectionState.ATTACHED
        self.started_at = datetime.now()

        self._tasks = [
            asyncio.create_task(self._forward_client_input(), name="client->container"),
            asyncio.create_task(self._forward_container_output(), name="container->client"),
        ]
        self._supervisor = asyncio.create_task(self._supervise())
        logger.info(f"Attached to container {self.container_id[:12]} (exec {stream.exec_id[:12]})")

    async def send_single_message(self, text: str) -> None:
        """
        Write text to the attached terminal's input.

        Raises:
            NotAttachedError: If the connection is not attached.
        """
        if self._state is not ConnectionState.ATTACHED:
            raise NotAttachedError(f"No interactive session attached to {self.container_id}")
        await self._write_input(text.encode("utf-8"))

    def _abort(self, reason: str) -> None:
        """Mark a connection that never reached attached as closed."""
        self._state = ConnectionState.CLOSED
        self.termination_reason = reason
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def close(self, reason: str = "detached") -> None:
        """Terminate the bridge and release both sides. Idempotent."""
        if self._state is ConnectionState.CLOSED:
            await self._closed.wait()
            return

        was_live = self._state is ConnectionState.ATTACHED
        self._state = ConnectionState.CLOSED
        self.termination_reason = self.termination_reason or reason

        if self._stream is not None:
            self._stream.close()

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if was_live:
            try:
                await self.client.close()
            except (RuntimeError, OSError, WebSocketDisconnect) as e:
                logger.debug(f"Client for {self.container_id[:12]} already closed: {e}")

        self._closed.set()
        logger.info(f"Connection to {self.container_id[:12]} closed: {self.termination_reason}")

        if self._on_close is not None:
            await self._on_close(self)

    async def _supervise(self) -> None:
        """Wait for either direction to finish, then close the other."""
        done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)

        reason = "detached"
        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"{task.get_name()} forwarding for {self.container_id[:12]} failed: {error}")
                reason = f"{task.get_name()} failed: {error}"
            else:
                reason = task.result()
            break

        await self.close(reason)

    async def _write_input(self, data: bytes) -> None:
        async with self._input_lock:
            try:
                await asyncio.to_thread(self._stream.write, data)
            except OSError as e:
                raise TransportError(f"Write to {self.container_id} failed: {e}") from e

    async def _forward_client_input(self) -> str:
        while True:
            try:
                message = await self.client.receive()
            except WebSocketDisconnect:
                return "client closed"
            if message["type"] == "websocket.disconnect":
                return "client closed"

            data = message.get("bytes")
            if data is None:
                data = (message.get("text") or "").encode("utf-8")
            await self._write_input(data)

    async def _forward_container_output(self) -> str:
        # Multi-byte characters may be split across chunks
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            try:
                chunk = await asyncio.to_thread(self._stream.read, READ_CHUNK_SIZE)
            except (OSError, ValueError) as e:
                raise TransportError(f"Read from {self.container_id} failed: {e}") from e

            final = not chunk
            text = decoder.decode(chunk, final=final)
            if text:
                try:
                    await self.client.send_text(text)
                except WebSocketDisconnect:
                    return "client closed"
            if final:
                return "container exited"
