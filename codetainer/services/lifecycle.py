"""
Lifecycle Manager
=================

Create/start/stop state transitions of codetainer records against the
container engine, plus image registration.

Codetainer lifecycle:
- created: container exists in the engine but has never been started
- running: container started
- stopped: container stopped, can be started again
"""

import asyncio
import logging

from ..errors import ConflictError, NotFoundError, ValidationError
from ..registry import CodetainerRegistry, validate_name
from ..schemas import Codetainer, CodetainerImage
from .runtime import DockerRuntime

logger = logging.getLogger(__name__)

# Seconds the engine waits before killing a stopping container
STOP_TIMEOUT_SECONDS = 10


class LifecycleManager:
    """Validated state transitions of codetainers."""

    def __init__(
        self,
        registry: CodetainerRegistry,
        runtime: DockerRuntime,
        stop_timeout: int = STOP_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.runtime = runtime
        self.stop_timeout = stop_timeout

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def register_image(self, name: str, tag: str = "latest") -> CodetainerImage:
        """
        Register a Docker image to be used as a codetainer.

        Raises:
            ValidationError: If name or tag is missing.
            NotFoundError: If the engine does not have the image.
            ConflictError: If the image is already registered.
        """
        if not name or any(c.isspace() for c in name):
            raise ValidationError("image name is required")
        if not tag or any(c.isspace() for c in tag):
            raise ValidationError("image tag is required")

        reference = f"{name}:{tag}"
        image_id = await asyncio.to_thread(self.runtime.inspect_image, reference)
        return self.registry.register_image(image_id, name, tag)

    def list_images(self) -> list[CodetainerImage]:
        return self.registry.list_images()

    # -------------------------------------------------------------------------
    # Codetainers
    # -------------------------------------------------------------------------

    def list(self) -> list[Codetainer]:
        return self.registry.list_codetainers()

    def lookup(self, id_or_name: str) -> Codetainer:
        return self.registry.lookup_codetainer(id_or_name)

    async def create(self, name: str, image_id: str) -> Codetainer:
        """
        Create a new codetainer from a registered image.

        Args:
            name: Unique codetainer name
            image_id: Registered image id, name:tag or name

        Raises:
            ValidationError: If name or image_id is invalid.
            NotFoundError: If the image is not registered.
            ConflictError: If the name is taken.
            ContainerRuntimeError: If the engine fails to create the container.
        """
        validate_name(name)
        if not image_id:
            raise ValidationError("image_id is required")

        image = self.registry.get_image(image_id)

        try:
            self.registry.lookup_codetainer(name)
        except NotFoundError:
            pass
        else:
            raise ConflictError(f"Codetainer '{name}' already exists")

        logger.info(f"Creating codetainer {name} from image: {image.reference}")
        container_id = await asyncio.to_thread(self.runtime.create_container, image.id, name)

        try:
            return self.registry.insert_codetainer(
                Codetainer(id=container_id, name=name, image_id=image.id, status="created")
            )
        except ConflictError:
            logger.warning(f"Removing container {container_id[:12]} after failed registration")
            await asyncio.to_thread(self.runtime.remove_container, container_id)
            raise

    async def start(self, id_or_name: str) -> Codetainer:
        """
        Start a codetainer.

        Raises:
            NotFoundError: If the codetainer does not resolve.
            ContainerRuntimeError: If the engine fails to start it.
        """
        codetainer = self.registry.lookup_codetainer(id_or_name)

        logger.info(f"Starting codetainer: {codetainer.name} ({codetainer.id[:12]})")
        await asyncio.to_thread(self.runtime.start_container, codetainer.id)
        return self.registry.update_codetainer_status(codetainer.id, "running")

    async def stop(self, id_or_name: str) -> Codetainer:
        """
        Stop a codetainer (don't remove it).

        Raises:
            NotFoundError: If the codetainer does not resolve.
            ContainerRuntimeError: If the engine fails to stop it.
        """
        codetainer = self.registry.lookup_codetainer(id_or_name)

        logger.info(f"[STOP] Stopping codetainer: {codetainer.name} ({codetainer.id[:12]})")
        await asyncio.to_thread(self.runtime.stop_container, codetainer.id, self.stop_timeout)
        return self.registry.update_codetainer_status(codetainer.id, "stopped")
