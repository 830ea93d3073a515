"""
Codetainer Registry Module
==========================

Metadata storage for registered images and codetainers.
Uses an SQLite database stored at ~/.codetainer/codetainer.db by default.

A codetainer resolves by its engine id or, as an alternate key, by its
unique human-readable name.
"""

import logging
import re
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, UniqueConstraint, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import Config
from .errors import ConflictError, NotFoundError, ValidationError
from .schemas import Codetainer, CodetainerImage

# Module logger
logger = logging.getLogger(__name__)

CODETAINER_STATUSES = ("created", "running", "stopped")

NAME_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]{0,62}$')


# =============================================================================
# SQLAlchemy Models
# =============================================================================

Base = declarative_base()


class ImageRecord(Base):
    """SQLAlchemy model for registered images."""
    __tablename__ = "images"

    id = Column(String(100), primary_key=True)  # engine image id (sha256:...)
    name = Column(String(255), nullable=False, index=True)
    tag = Column(String(128), nullable=False, default="latest")
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        UniqueConstraint('name', 'tag', name='uq_image_reference'),
    )


class CodetainerRecord(Base):
    """SQLAlchemy model for codetainers."""
    __tablename__ = "codetainers"

    id = Column(String(100), primary_key=True)  # engine container id
    name = Column(String(63), nullable=False, unique=True, index=True)
    image_id = Column(String(100), ForeignKey("images.id"), nullable=False)
    status = Column(String(20), nullable=False, default='created')
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        CheckConstraint("status IN ('created', 'running', 'stopped')", name='valid_codetainer_status'),
    )


def validate_name(name: str) -> str:
    """Validate a codetainer name (images are checked by the lifecycle manager)."""
    if not name or not NAME_PATTERN.match(name):
        raise ValidationError(
            "Invalid name. Use letters, numbers, '.', '_' and '-' (1-63 chars, "
            "starting with a letter or number)."
        )
    return name


# =============================================================================
# Registry
# =============================================================================

class CodetainerRegistry:
    """Storage for image and codetainer records."""

    def __init__(self, database_url: str):
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.database_url = database_url
        self._engine = create_engine(database_url, connect_args=connect_args)
        Base.metadata.create_all(bind=self._engine)
        self._SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        logger.debug("Initialized registry database at: %s", database_url)

    @classmethod
    def from_config(cls, config: Config) -> "CodetainerRegistry":
        return cls(config.database_url)

    def dispose(self) -> None:
        """Release pooled database connections."""
        self._engine.dispose()

    @contextmanager
    def _get_session(self):
        """
        Context manager for database sessions with automatic commit/rollback.

        Yields:
            SQLAlchemy session
        """
        session = self._SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def register_image(self, image_id: str, name: str, tag: str = "latest") -> CodetainerImage:
        """
        Register an image reference.

        Raises:
            ValidationError: If the id, name or tag is empty.
            ConflictError: If the image or name:tag is already registered.
        """
        if not image_id:
            raise ValidationError("image id is required")
        if not name:
            raise ValidationError("image name is required")
        if not tag:
            raise ValidationError("image tag is required")

        try:
            with self._get_session() as session:
                record = ImageRecord(id=image_id, name=name, tag=tag, created_at=datetime.now())
                session.add(record)
                session.flush()
                image = CodetainerImage.model_validate(record)
        except IntegrityError as e:
            logger.warning("Attempted to register duplicate image: %s:%s", name, tag)
            raise ConflictError(f"Image '{name}:{tag}' is already registered") from e

        logger.info("Registered image %s:%s (%s)", name, tag, image_id)
        return image

    def list_images(self) -> list[CodetainerImage]:
        with self._get_session() as session:
            records = session.query(ImageRecord).order_by(ImageRecord.created_at).all()
            return [CodetainerImage.model_validate(r) for r in records]

    def get_image(self, reference: str) -> CodetainerImage:
        """
        Look up an image by id, ``name:tag`` or bare name (tag ``latest``).

        Raises:
            NotFoundError: If no registered image matches.
        """
        if not reference:
            raise ValidationError("image reference is required")

        name, sep, tag = reference.rpartition(":")
        # registry hosts may carry a port (host:5000/image)
        if not sep or "/" in tag:
            name, tag = reference, "latest"

        with self._get_session() as session:
            record = session.get(ImageRecord, reference)
            if record is None:
                record = session.query(ImageRecord).filter(
                    ImageRecord.name == name,
                    ImageRecord.tag == tag,
                ).first()
            if record is None:
                raise NotFoundError(f"Image '{reference}' is not registered")
            return CodetainerImage.model_validate(record)

    # -------------------------------------------------------------------------
    # Codetainers
    # -------------------------------------------------------------------------

    def insert_codetainer(self, codetainer: Codetainer) -> Codetainer:
        """
        Persist a new codetainer record.

        Raises:
            ConflictError: If the id or name is already taken.
        """
        try:
            with self._get_session() as session:
                record = CodetainerRecord(
                    id=codetainer.id,
                    name=codetainer.name,
                    image_id=codetainer.image_id,
                    status=codetainer.status,
                    created_at=datetime.now(),
                )
                session.add(record)
                session.flush()
                stored = Codetainer.model_validate(record)
        except IntegrityError as e:
            raise ConflictError(f"Codetainer '{codetainer.name}' already exists") from e

        logger.info("Registered codetainer '%s' (%s)", stored.name, stored.id)
        return stored

    def list_codetainers(self) -> list[Codetainer]:
        with self._get_session() as session:
            records = session.query(CodetainerRecord).order_by(CodetainerRecord.created_at).all()
            return [Codetainer.model_validate(r) for r in records]

    def lookup_codetainer(self, id_or_name: str) -> Codetainer:
        """
        Resolve a codetainer by id first, then by name.

        Raises:
            ValidationError: If id_or_name is empty.
            NotFoundError: If nothing matches.
        """
        if not id_or_name:
            raise ValidationError("id is required")

        with self._get_session() as session:
            record = session.get(CodetainerRecord, id_or_name)
            if record is None:
                record = session.query(CodetainerRecord).filter(
                    CodetainerRecord.name == id_or_name
                ).first()
            if record is None:
                raise NotFoundError(f"Codetainer '{id_or_name}' not found")
            return Codetainer.model_validate(record)

    def update_codetainer_status(self, codetainer_id: str, status: str) -> Codetainer:
        """
        Update the stored status of a codetainer.

        Raises:
            ValidationError: If status is not a known codetainer status.
            NotFoundError: If the codetainer does not exist.
        """
        if status not in CODETAINER_STATUSES:
            raise ValidationError(f"Invalid codetainer status: {status}")

        with self._get_session() as session:
            record = session.get(CodetainerRecord, codetainer_id)
            if record is None:
                raise NotFoundError(f"Codetainer '{codetainer_id}' not found")
            record.status = status
            session.flush()
            updated = Codetainer.model_validate(record)

        logger.debug("Codetainer %s status -> %s", codetainer_id, status)
        return updated
