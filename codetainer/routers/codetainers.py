"""
Codetainers Router
==================

API endpoints for codetainer control (create/start/stop), terminal geometry,
files and command injection.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ..context import AppContext, get_context
from ..errors import ValidationError
from ..schemas import (
    Codetainer,
    CodetainerBody,
    CodetainerListBody,
    FileListBody,
    SuccessBody,
    TTYBody,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/codetainer", tags=["codetainers"])


def resolve_codetainer(ctx: AppContext, id: str) -> Codetainer:
    """Look up a codetainer by id or name from the path."""
    if not id:
        raise ValidationError("id is required")
    return ctx.lifecycle.lookup(id)


@router.get("", response_model=CodetainerListBody)
async def list_codetainers(ctx: AppContext = Depends(get_context)):
    """List all codetainers."""
    return CodetainerListBody(codetainers=ctx.lifecycle.list())


@router.post("", response_model=CodetainerBody)
async def create_codetainer(
    name: str = Form(""),
    image_id: str = Form(""),
    ctx: AppContext = Depends(get_context),
):
    """Create a new codetainer."""
    codetainer = await ctx.lifecycle.create(name, image_id)
    return CodetainerBody(codetainer=codetainer)


@router.post("/{id}/start", response_model=CodetainerBody)
async def start_codetainer(id: str, ctx: AppContext = Depends(get_context)):
    """Start a stopped codetainer."""
    return CodetainerBody(codetainer=await ctx.lifecycle.start(id))


@router.post("/{id}/stop", response_model=CodetainerBody)
async def stop_codetainer(id: str, ctx: AppContext = Depends(get_context)):
    """Stop a codetainer."""
    return CodetainerBody(codetainer=await ctx.lifecycle.stop(id))


@router.get("/{id}/tty", response_model=TTYBody)
async def get_current_tty(id: str, ctx: AppContext = Depends(get_context)):
    """Return the codetainer TTY height and width."""
    codetainer = resolve_codetainer(ctx, id)
    return TTYBody(tty=await ctx.gateway.get_geometry(codetainer.id))


@router.post("/{id}/tty", response_model=TTYBody)
async def update_current_tty(
    id: str,
    height: int = Form(0),
    width: int = Form(0),
    ctx: AppContext = Depends(get_context),
):
    """Update the codetainer TTY height and width."""
    codetainer = resolve_codetainer(ctx, id)
    return TTYBody(tty=await ctx.gateway.resize(codetainer.id, height, width))


@router.get("/{id}/file", response_model=FileListBody)
async def list_files(
    id: str,
    path: str = Query(""),
    ctx: AppContext = Depends(get_context),
):
    """List files in a codetainer directory."""
    codetainer = resolve_codetainer(ctx, id)
    if not path:
        raise ValidationError("path is required")
    return FileListBody(files=await ctx.gateway.list_files(codetainer.id, path))


@router.put("/{id}/file", response_model=SuccessBody)
async def upload_file(
    id: str,
    upload: UploadFile | None = File(None),
    dst_path: str = Form(""),
    ctx: AppContext = Depends(get_context),
):
    """Upload a file to a codetainer."""
    codetainer = resolve_codetainer(ctx, id)
    if not dst_path:
        raise ValidationError("Destination folder dst_path is required")
    if upload is None:
        raise ValidationError("upload file is required")

    data = await upload.read()
    logger.info(f"Uploading {upload.filename} to codetainer: {codetainer.id[:12]}")
    await ctx.gateway.upload_file(codetainer.id, upload.filename or "", data, dst_path)
    return SuccessBody()


@router.post("/{id}/send", response_model=SuccessBody)
async def send_command(
    id: str,
    command: str = Form(""),
    ctx: AppContext = Depends(get_context),
):
    """Send a command line to the codetainer's attached terminal."""
    codetainer = resolve_codetainer(ctx, id)
    logger.info(f"Sending command to container: {codetainer.id[:12]} -> {command}")
    await ctx.sessions.send(codetainer.id, command + "\n")
    return SuccessBody()


@router.post("/{id}/detach", response_model=SuccessBody)
async def detach_codetainer(id: str, ctx: AppContext = Depends(get_context)):
    """Close the codetainer's attached terminal session, if any."""
    codetainer = resolve_codetainer(ctx, id)
    await ctx.sessions.detach(codetainer.id)
    return SuccessBody()
