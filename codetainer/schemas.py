"""
Pydantic Schemas
================

Typed records and request/response bodies for the API endpoints.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

CodetainerStatusValue = Literal["created", "running", "stopped"]
FileKind = Literal["file", "directory", "symlink"]


# ============================================================================
# Records
# ============================================================================

class CodetainerImage(BaseModel):
    """A registered image reference."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    name: str
    tag: str = "latest"

    @property
    def reference(self) -> str:
        """Image reference understood by the engine (name:tag)."""
        return f"{self.name}:{self.tag}"


class Codetainer(BaseModel):
    """A managed container instance."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    image_id: str
    status: CodetainerStatusValue = "created"


class TTY(BaseModel):
    """Terminal geometry."""
    height: int = Field(..., gt=0)
    width: int = Field(..., gt=0)


class ShortFile(BaseModel):
    """A directory listing entry."""
    name: str
    path: str
    kind: FileKind


# ============================================================================
# Response Bodies
# ============================================================================

class CodetainerImageBody(BaseModel):
    image: CodetainerImage


class CodetainerImageListBody(BaseModel):
    images: list[CodetainerImage]


class CodetainerBody(BaseModel):
    codetainer: Codetainer


class CodetainerListBody(BaseModel):
    codetainers: list[Codetainer]


class TTYBody(BaseModel):
    tty: TTY


class FileListBody(BaseModel):
    files: list[ShortFile]


class SuccessBody(BaseModel):
    success: bool = True


class HealthBody(BaseModel):
    status: str = "healthy"
    docker: bool


class ErrorDetail(BaseModel):
    kind: str
    message: str


class ErrorBody(BaseModel):
    """Uniform error envelope."""
    error: ErrorDetail
