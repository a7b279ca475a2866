from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from ..errors import TransferError
from ..models import ImageArtifact

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DEFAULT_TIMEOUT_S = 60.0


def _partial_path(dest: Path) -> Path:
    return dest.with_name(dest.name + ".part")


def _is_remote(source: str) -> bool:
    return urlparse(source).scheme in {"http", "https"}


def _local_source(source: str) -> Path:
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(source)


def _download(
    url: str,
    part: Path,
    *,
    session: requests.Session,
    timeout: float,
) -> None:
    """Stream url into part, resuming from an existing partial file."""

    offset = part.stat().st_size if part.exists() else 0
    headers = {"Range": f"bytes={offset}-"} if offset else {}

    with session.get(url, stream=True, timeout=timeout, headers=headers) as r:
        if offset and r.status_code == 416:
            # Range not satisfiable: the partial file is already complete.
            logger.info("Partial download already complete: %s", part)
            return
        r.raise_for_status()
        if offset and r.status_code == 206:
            logger.info("Resuming download of %s at %d bytes", url, offset)
            mode = "ab"
        else:
            if offset:
                logger.info("Server ignored range request; restarting %s", url)
            mode = "wb"
        with part.open(mode) as f:
            for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    f.write(chunk)


def fetch_image(
    source: str,
    dest: Path,
    *,
    arch: str,
    min_size: int,
    allow_download: bool = True,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> ImageArtifact:
    """Make sure a non-empty copy of source exists at dest.

    A cached non-empty file is reused as-is (its validity is decided by the
    verifier). A zero-byte cache entry is discarded first. Data is written to
    ``<dest>.part`` and only renamed onto dest once the transfer completed, so
    an interrupted transfer never leaves a file at the canonical path.
    """

    dest = Path(dest)
    artifact = ImageArtifact(source=source, path=dest, arch=arch, min_size=min_size)

    if dest.exists():
        if dest.stat().st_size > 0:
            logger.info("[%s] Using cached image %s", arch, dest)
            return artifact
        logger.warning("[%s] Discarding empty cached image %s", arch, dest)
        dest.unlink()

    if not allow_download:
        raise TransferError(f"No cached image at {dest} and downloads are disabled")

    dest.parent.mkdir(parents=True, exist_ok=True)
    part = _partial_path(dest)

    if _is_remote(source):
        logger.info("[%s] Downloading %s -> %s", arch, source, dest)
        own_session = session is None
        sess = session or requests.Session()
        try:
            _download(source, part, session=sess, timeout=timeout)
        except (requests.RequestException, OSError) as e:
            raise TransferError(f"Download of {source} failed: {e}") from e
        finally:
            if own_session:
                sess.close()
    else:
        src = _local_source(source)
        logger.info("[%s] Copying %s -> %s", arch, src, dest)
        try:
            shutil.copyfile(src, part)
        except OSError as e:
            part.unlink(missing_ok=True)
            raise TransferError(f"Copy of {src} failed: {e}") from e

    if not part.exists() or part.stat().st_size == 0:
        part.unlink(missing_ok=True)
        raise TransferError(f"Transfer of {source} produced no data")

    os.replace(part, dest)
    logger.info("[%s] Fetched %s (%d bytes)", arch, dest, dest.stat().st_size)
    return artifact
