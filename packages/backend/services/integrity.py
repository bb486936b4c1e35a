"""Model artifact integrity checks.

Validation is a size heuristic, not a security control: an artifact is
valid when it is at least ``size_ratio`` of the catalog's expected size and
at least ``min_bytes`` overall. This catches truncated downloads without
requiring a checksum.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from core.model_catalog import ModelDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MIN_BYTES = 100_000_000
DEFAULT_SIZE_RATIO = 0.9


@dataclass(frozen=True)
class ModelFileState:
    """On-disk state of one artifact, computed on demand."""

    exists: bool
    size_bytes: int
    is_valid: bool


class IntegrityChecker:
    """Decides whether an artifact is absent, corrupt, or valid."""

    def __init__(
        self,
        models_dir: Path,
        min_bytes: int = DEFAULT_MIN_BYTES,
        size_ratio: float = DEFAULT_SIZE_RATIO,
    ):
        self._models_dir = Path(models_dir)
        self._min_bytes = min_bytes
        self._size_ratio = size_ratio

    @property
    def models_dir(self) -> Path:
        return self._models_dir

    def artifact_path(self, descriptor: ModelDescriptor) -> Path:
        """Artifacts are stored under the models directory, named by model id."""
        return self._models_dir / descriptor.id

    def minimum_size(self, descriptor: ModelDescriptor) -> int:
        return max(self._min_bytes, int(descriptor.expected_size_bytes * self._size_ratio))

    def _size_is_valid(self, descriptor: ModelDescriptor, size: int) -> bool:
        return size >= self.minimum_size(descriptor)

    def file_state(self, descriptor: ModelDescriptor) -> ModelFileState:
        path = self.artifact_path(descriptor)
        try:
            if not path.is_file():
                return ModelFileState(exists=False, size_bytes=0, is_valid=False)
            size = path.stat().st_size
        except OSError:
            logger.warning("Could not stat model file %s", path, exc_info=True)
            return ModelFileState(exists=path.exists(), size_bytes=0, is_valid=False)

        return ModelFileState(
            exists=True,
            size_bytes=size,
            is_valid=self._size_is_valid(descriptor, size),
        )

    def validate(self, descriptor: ModelDescriptor) -> bool:
        """Return True only for an artifact that exists and is large enough."""
        path = self.artifact_path(descriptor)
        try:
            if not path.is_file():
                return False
            size = path.stat().st_size
        except OSError:
            logger.warning("Error checking model file %s", path, exc_info=True)
            return False

        if not self._size_is_valid(descriptor, size):
            logger.info(
                "Model file too small: %d bytes (expected ~%d, minimum %d)",
                size,
                descriptor.expected_size_bytes,
                self.minimum_size(descriptor),
            )
            return False
        return True

    def discard_invalid(self, descriptor: ModelDescriptor) -> None:
        """Delete the artifact if present. Failures are logged, never raised."""
        path = self.artifact_path(descriptor)
        try:
            if path.exists():
                path.unlink()
                logger.info("Deleted corrupted model: %s", path)
        except OSError:
            logger.warning("Failed to delete model file %s", path, exc_info=True)
