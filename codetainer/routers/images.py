"""
Images Router
=============

API endpoints for registering Docker images used as codetainers.
"""

from fastapi import APIRouter, Depends, Form

from ..context import AppContext, get_context
from ..schemas import CodetainerImageBody, CodetainerImageListBody

router = APIRouter(prefix="/api/v1/image", tags=["images"])


@router.get("", response_model=CodetainerImageListBody)
async def list_images(ctx: AppContext = Depends(get_context)):
    """List all codetainer images."""
    return CodetainerImageListBody(images=ctx.lifecycle.list_images())


@router.post("", response_model=CodetainerImageBody)
async def register_image(
    name: str = Form(""),
    tag: str = Form("latest"),
    ctx: AppContext = Depends(get_context),
):
    """Register a Docker image to be used as a codetainer."""
    image = await ctx.lifecycle.register_image(name, tag or "latest")
    return CodetainerImageBody(image=image)
