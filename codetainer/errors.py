"""
Codetainer Errors
=================

Exception hierarchy shared by every component. Each error carries the
``kind`` and HTTP status used to render the uniform error envelope.
"""


class CodetainerError(Exception):
    """Base codetainer exception."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(CodetainerError):
    """A required field is missing or invalid."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(CodetainerError):
    """Lookup by id or name yielded no record."""

    kind = "not_found"
    status_code = 404


class ConflictError(CodetainerError):
    """The operation conflicts with existing state (e.g. already attached)."""

    kind = "conflict"
    status_code = 409


class NotAttachedError(CodetainerError):
    """No interactive session is attached to the container."""

    kind = "not_attached"
    status_code = 409


class ContainerRuntimeError(CodetainerError):
    """The container engine rejected or failed an operation."""

    kind = "runtime_error"
    status_code = 502


class ExecFailure(CodetainerError):
    """A one-shot command wrote to stderr."""

    kind = "exec_failure"
    status_code = 502

    def __init__(self, message: str, stdout: bytes = b"", exit_code: int | None = None):
        super().__init__(message)
        self.stdout = stdout
        self.exit_code = exit_code


class TransportError(CodetainerError):
    """A client or container stream closed unexpectedly or I/O failed."""

    kind = "transport_error"
    status_code = 502


class ExecTimeoutError(TransportError):
    """A one-shot command did not finish within its timeout."""

    status_code = 504


class ParseError(CodetainerError):
    """Command output could not be parsed."""

    kind = "parse_error"
    status_code = 502
