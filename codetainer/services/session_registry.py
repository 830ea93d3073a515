"""
Session Registry
================

Single authority over which ContainerConnection, if any, is attached to a
codetainer.

Attach policy: at most one interactive session per codetainer. Attaching to
a codetainer that already has a session fails with ConflictError; the
existing session must be detached first.

The map lock is only held for lookup/insert/remove, never across I/O.
"""

import asyncio
import logging
from typing import Sequence

from ..config import DEFAULT_SHELL
from ..errors import ConflictError, NotAttachedError
from ..registry import CodetainerRegistry
from .connection import ClientEndpoint, ContainerConnection
from .runtime import DockerRuntime

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks attached connections keyed by codetainer id."""

    def __init__(
        self,
        registry: CodetainerRegistry,
        runtime: DockerRuntime,
        command: Sequence[str] = DEFAULT_SHELL,
    ):
        self.registry = registry
        self.runtime = runtime
        self.command = tuple(command)
        # codetainer id -> active connection
        self._connections: dict[str, ContainerConnection] = {}
        self._lock = asyncio.Lock()

    async def attach(
        self,
        container_id: str,
        client: ClientEndpoint,
        greeting: str | None = None,
    ) -> ContainerConnection:
        """
        Attach a client to a codetainer's terminal.

        Args:
            container_id: Codetainer id or name
            client: Accepted client WebSocket
            greeting: Optional first message for the client once attached

        Returns:
            The started connection

        Raises:
            NotFoundError: If the codetainer does not exist.
            ConflictError: If a session is already attached.
        """
        codetainer = self.registry.lookup_codetainer(container_id)
        key = codetainer.id

        connection = ContainerConnection(
            key,
            client,
            self.runtime,
            command=self.command,
            on_close=self._release,
        )

        async with self._lock:
            if key in self._connections:
                logger.warning(f"Rejected second attach to codetainer {codetainer.name}")
                raise ConflictError(
                    f"Codetainer '{codetainer.name}' already has an attached session; detach it first"
                )
            # Reserve the slot before starting outside the lock
            self._connections[key] = connection

        try:
            await connection.start(greeting)
        except Exception:
            await self._release(connection)
            raise

        logger.info(f"Session attached to codetainer {codetainer.name} ({key[:12]})")
        return connection

    async def get(self, container_id: str) -> ContainerConnection | None:
        async with self._lock:
            return self._connections.get(container_id)

    async def active_container_ids(self) -> list[str]:
        async with self._lock:
            return list(self._connections)

    async def send(self, container_id: str, text: str) -> None:
        """
        Write text to the attached session's terminal input.

        Raises:
            NotAttachedError: If no session is attached.
        """
        connection = await self.get(container_id)
        if connection is None:
            raise NotAttachedError(f"No interactive session attached to {container_id}")
        await connection.send_single_message(text)

    async def detach(self, container_id: str) -> bool:
        """
        Close and forget the attached session, if any.

        Returns:
            True if a session was detached, False if none was attached
        """
        async with self._lock:
            connection = self._connections.pop(container_id, None)

        if connection is None:
            return False

        await connection.close("detached")
        logger.info(f"Session detached from codetainer {container_id[:12]}")
        return True

    async def close_all(self) -> None:
        """Close every session (server shutdown)."""
        async with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()

        if connections:
            logger.info(f"Closing {len(connections)} attached session(s)")
            await asyncio.gather(
                *(connection.close("server shutdown") for connection in connections),
                return_exceptions=True,
            )

    async def _release(self, connection: ContainerConnection) -> None:
        """Forget a connection that closed on its own."""
        async with self._lock:
            if self._connections.get(connection.container_id) is connection:
                del self._connections[connection.container_id]
                logger.debug(f"Released session for {connection.container_id[:12]}")
