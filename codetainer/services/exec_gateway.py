"""
Exec Gateway
============

Synchronous one-shot commands inside a running codetainer.

A command's stdout and stderr are captured into independent buffers. Any
output on stderr marks the command as failed, whatever its exit status:
utilities such as ``tput`` do not reliably propagate exit codes through the
engine's exec layer.

Resize, geometry queries, file listing and uploads are built on top and
never touch an attached interactive session.
"""

import asyncio
import io
import logging
import posixpath
import tarfile
import threading
import time
from dataclasses import dataclass

from ..config import DEFAULT_EXEC_TIMEOUT
from ..errors import ExecFailure, ExecTimeoutError, ParseError, TransportError, ValidationError
from ..schemas import TTY, ShortFile
from .runtime import RUNTIME_ERRORS, DockerRuntime

logger = logging.getLogger(__name__)

# Commands used to read the terminal geometry
COLUMNS_COMMAND = ["tput", "cols"]
ROWS_COMMAND = ["tput", "lines"]

# Listing markers appended by the files utility
DIRECTORY_MARKER = "/"
SYMLINK_MARKER = "@"


@dataclass(frozen=True)
class ExecResult:
    """Captured output of a one-shot command."""
    stdout: bytes
    stderr: bytes
    exit_code: int | None = None

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


def parse_short_files(raw: bytes, base_path: str = "") -> list[ShortFile]:
    """
    Parse the files utility output into ShortFile entries, preserving order.

    One entry per line; a trailing "/" marks a directory and a trailing "@"
    a symlink. Blank lines are ignored.

    Raises:
        ParseError: If the output is not UTF-8 or an entry is malformed.
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"File listing is not valid UTF-8: {e}") from e

    files = []
    for lineno, line in enumerate(text.split("\n"), start=1):
        entry = line.rstrip("\r")
        if not entry.strip():
            continue

        if entry.endswith(DIRECTORY_MARKER):
            name, kind = entry[:-1], "directory"
        elif entry.endswith(SYMLINK_MARKER):
            name, kind = entry[:-1], "symlink"
        else:
            name, kind = entry, "file"

        if not name or "/" in name or "\x00" in name:
            raise ParseError(f"Malformed file listing entry on line {lineno}: {entry!r}")

        path = posixpath.join(base_path, name) if base_path else name
        files.append(ShortFile(name=name, path=path, kind=kind))

    return files


def _parse_dimension(label: str, output: bytes) -> int:
    value = output.decode("utf-8", errors="replace").strip("\r\n")
    try:
        dimension = int(value)
    except ValueError as e:
        raise ParseError(f"Invalid terminal {label}: {value!r}") from e
    if dimension <= 0:
        raise ParseError(f"Invalid terminal {label}: {dimension}")
    return dimension


def _require_dimension(label: str, value) -> int:
    # bool is an int subclass; reject it along with zero and negatives
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{label} is required")
    return value


def _tar_single_file(name: str, data: bytes) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        info.mode = 0o644
        info.mtime = int(time.time())
        tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class ExecGateway:
    """Runs one-shot commands against the runtime."""

    def __init__(
        self,
        runtime: DockerRuntime,
        timeout: float = DEFAULT_EXEC_TIMEOUT,
        files_command: str = "/codetainer/utils/files",
    ):
        self.runtime = runtime
        self.timeout = timeout
        self.files_command = files_command

    def _run(self, container_id: str, argv: list[str], opened: list, abandoned: threading.Event) -> ExecResult:
        """Blocking body of execute(); runs in a worker thread."""
        stdout = io.BytesIO()
        stderr = io.BytesIO()

        with self.runtime.exec_stream(container_id, argv) as (exec_id, stream):
            opened.append(stream)
            if abandoned.is_set():
                raise TransportError(f"exec {argv[0]} abandoned before output was read")
            try:
                for out_chunk, err_chunk in stream:
                    if out_chunk:
                        stdout.write(out_chunk)
                    if err_chunk:
                        stderr.write(err_chunk)
            except (*RUNTIME_ERRORS, OSError, ValueError) as e:
                raise TransportError(f"Exec stream failed: {e}") from e
            if stream.closed:
                raise TransportError(f"exec {argv[0]} stream closed before completion")

        exit_code = self.runtime.exec_exit_code(exec_id)
        return ExecResult(stdout.getvalue(), stderr.getvalue(), exit_code)

    @staticmethod
    def _abandon(opened: list, abandoned: threading.Event) -> None:
        """Close the exec socket so the worker thread stops reading."""
        abandoned.set()
        for stream in opened:
            stream.close()

    async def execute(
        self,
        container_id: str,
        argv: list[str],
        timeout: float | None = None,
    ) -> ExecResult:
        """
        Run a command to completion and capture its output.

        Args:
            container_id: Target container id
            argv: Command vector
            timeout: Seconds to wait before giving up (default: gateway timeout)

        Returns:
            ExecResult with stdout, stderr and exit code

        Raises:
            ValidationError: If container_id or argv is empty.
            ExecFailure: If the command wrote anything to stderr.
            ExecTimeoutError: If the command did not finish in time.
        """
        if not container_id:
            raise ValidationError("id is required")
        if not argv or not all(isinstance(arg, str) for arg in argv):
            raise ValidationError("command is required")

        timeout = self.timeout if timeout is None else timeout
        opened: list = []
        abandoned = threading.Event()
        logger.debug(f"exec in {container_id[:12]}: {argv}")

        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._run, container_id, list(argv), opened, abandoned),
                timeout,
            )
        except asyncio.TimeoutError:
            self._abandon(opened, abandoned)
            logger.warning(f"exec {argv[0]} in {container_id[:12]} timed out after {timeout:g}s")
            raise ExecTimeoutError(f"{argv[0]} timed out after {timeout:g}s")
        except asyncio.CancelledError:
            self._abandon(opened, abandoned)
            raise

        if result.stderr:
            message = result.stderr.decode("utf-8", errors="replace").strip()
            logger.info(f"exec {argv[0]} in {container_id[:12]} failed (exit {result.exit_code}): {message}")
            raise ExecFailure(
                message or f"{argv[0]} wrote to stderr",
                stdout=result.stdout,
                exit_code=result.exit_code,
            )

        return result

    async def resize(self, container_id: str, height: int, width: int) -> TTY:
        """Resize the container tty. Validates before any runtime call."""
        if not container_id:
            raise ValidationError("id is required")
        height = _require_dimension("height", height)
        width = _require_dimension("width", width)

        await asyncio.to_thread(self.runtime.resize_container_tty, container_id, height, width)
        logger.debug(f"Resized {container_id[:12]} tty to {width}x{height}")
        return TTY(height=height, width=width)

    async def get_geometry(self, container_id: str, timeout: float | None = None) -> TTY:
        """Read the current terminal geometry as seen inside the container."""
        columns = await self.execute(container_id, COLUMNS_COMMAND, timeout)
        rows = await self.execute(container_id, ROWS_COMMAND, timeout)

        return TTY(
            height=_parse_dimension("rows", rows.stdout),
            width=_parse_dimension("columns", columns.stdout),
        )

    async def list_files(
        self,
        container_id: str,
        path: str,
        timeout: float | None = None,
    ) -> list[ShortFile]:
        """List a directory inside the container."""
        if not path:
            raise ValidationError("path is required")

        result = await self.execute(container_id, [self.files_command, "--path", path], timeout)
        return parse_short_files(result.stdout, path)

    async def upload_file(self, container_id: str, filename: str, data: bytes, dst_path: str) -> str:
        """
        Copy a file into dst_path inside the container.

        Returns:
            Path of the uploaded file inside the container
        """
        if not container_id:
            raise ValidationError("id is required")
        if not dst_path:
            raise ValidationError("Destination folder dst_path is required")
        name = posixpath.basename(filename or "")
        if not name or name in (".", ".."):
            raise ValidationError("upload filename is required")

        archive = _tar_single_file(name, data)
        await asyncio.to_thread(self.runtime.put_archive, container_id, dst_path, archive)

        destination = posixpath.join(dst_path, name)
        logger.info(f"Uploaded {len(data)} bytes to {container_id[:12]}:{destination}")
        return destination
