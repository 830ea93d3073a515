"""
Backend Services
================

Container runtime access, one-shot execution, interactive sessions and
codetainer lifecycle.
"""

from .connection import ConnectionState, ContainerConnection, Session
from .exec_gateway import ExecGateway, ExecResult, parse_short_files
from .lifecycle import LifecycleManager
from .runtime import DockerRuntime, ExecStream, TtyStream
from .session_registry import SessionRegistry

__all__ = [
    "ConnectionState",
    "ContainerConnection",
    "DockerRuntime",
    "ExecGateway",
    "ExecResult",
    "ExecStream",
    "LifecycleManager",
    "Session",
    "SessionRegistry",
    "TtyStream",
    "parse_short_files",
]
