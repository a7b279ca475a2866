from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from ..errors import FormatError, SizeError
from ..models import ImageArtifact

logger = logging.getLogger(__name__)

ISO_SECTOR_SIZE = 2048
# The volume descriptor set starts at sector 16; byte 0 is the descriptor
# type, bytes 1-5 the standard identifier.
ISO_DESCRIPTOR_OFFSET = 16 * ISO_SECTOR_SIZE
ISO_STANDARD_ID = b"CD001"


def has_iso9660_signature(path: Path) -> bool:
    with Path(path).open("rb") as f:
        f.seek(ISO_DESCRIPTOR_OFFSET)
        descriptor = f.read(1 + len(ISO_STANDARD_ID))
    return len(descriptor) == 6 and descriptor[1:] == ISO_STANDARD_ID


def _discard(artifact: ImageArtifact) -> None:
    logger.warning("[%s] Deleting bad cached image %s", artifact.arch, artifact.path)
    artifact.path.unlink(missing_ok=True)


def verify_image(artifact: ImageArtifact) -> ImageArtifact:
    """Check size and ISO 9660 format, returning a validated copy.

    A failing file is deleted so that the next run fetches it again.
    """

    path = artifact.path
    if not path.exists():
        raise SizeError(f"Image missing: {path}")

    size = path.stat().st_size
    if size < artifact.min_size:
        _discard(artifact)
        raise SizeError(f"Image {path} is {size} bytes, expected at least {artifact.min_size}")

    if not has_iso9660_signature(path):
        _discard(artifact)
        raise FormatError(f"Image {path} has no ISO 9660 volume descriptor")

    logger.info("[%s] Verified %s (%d bytes)", artifact.arch, path, size)
    return dataclasses.replace(artifact, valid=True)
