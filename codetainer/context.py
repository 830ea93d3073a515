"""
Application Context
===================

Everything a request handler needs, built once at process start and
injected into handlers with ``Depends(get_context)``. Never mutated after
construction.
"""

from dataclasses import dataclass

from fastapi import Request, WebSocket

from .config import Config
from .registry import CodetainerRegistry
from .services.exec_gateway import ExecGateway
from .services.lifecycle import LifecycleManager
from .services.runtime import DockerRuntime
from .services.session_registry import SessionRegistry


@dataclass(frozen=True)
class AppContext:
    config: Config
    registry: CodetainerRegistry
    runtime: DockerRuntime
    gateway: ExecGateway
    sessions: SessionRegistry
    lifecycle: LifecycleManager

    async def shutdown(self) -> None:
        await self.sessions.close_all()
        self.runtime.close()
        self.registry.dispose()


def build_context(
    config: Config,
    runtime: DockerRuntime | None = None,
    registry: CodetainerRegistry | None = None,
) -> AppContext:
    """Wire the services together from a configuration."""
    runtime = runtime or DockerRuntime.from_config(config)
    registry = registry or CodetainerRegistry.from_config(config)

    return AppContext(
        config=config,
        registry=registry,
        runtime=runtime,
        gateway=ExecGateway(runtime, timeout=config.exec_timeout, files_command=config.files_command),
        sessions=SessionRegistry(registry, runtime, command=config.shell),
        lifecycle=LifecycleManager(registry, runtime),
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_websocket_context(websocket: WebSocket) -> AppContext:
    return websocket.app.state.context
