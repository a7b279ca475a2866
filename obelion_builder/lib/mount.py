from __future__ import annotations

import contextlib
import logging
import os
import signal
import threading
from pathlib import Path
from typing import Iterator, Optional

from ..errors import BuildInterrupted, MountError, PreconditionError
from ..models import ImageArtifact
from .command import CommandError, run_cmd

logger = logging.getLogger(__name__)

# A plain umount that blocks longer than this is retried lazily.
UMOUNT_TIMEOUT = 60


def attach_loop(image: Path) -> str:
    r = run_cmd(["losetup", "--find", "--show", "--read-only", str(image)])
    device = (r.stdout or "").strip()
    if not device:
        raise CommandError(r.argv, r.returncode, "losetup did not return a loop device")
    logger.info("Attached %s to %s", image, device)
    return device


def detach_loop(device: str) -> None:
    r = run_cmd(["losetup", "-d", device], check=False)
    if r.returncode != 0:
        # Already detached (or auto-cleared by umount) is fine.
        logger.debug("losetup -d %s returned %d: %s", device, r.returncode, r.stderr.strip())
    else:
        logger.info("Detached %s", device)


def unmount(mount_dir: Path) -> None:
    if not os.path.ismount(mount_dir):
        return
    r = run_cmd(["umount", str(mount_dir)], check=False, timeout=UMOUNT_TIMEOUT)
    if r.returncode != 0 and os.path.ismount(mount_dir):
        logger.warning("umount %s failed (%s); retrying lazily", mount_dir, r.stderr.strip())
        run_cmd(["umount", "-l", str(mount_dir)], check=False)
    if os.path.ismount(mount_dir):
        logger.error("Mount point still busy after teardown: %s", mount_dir)
    else:
        logger.info("Unmounted %s", mount_dir)


def teardown(mount_dir: Path, device: Optional[str]) -> None:
    """Unmount, then release the loop device. Safe to call repeatedly."""

    unmount(mount_dir)
    if device:
        detach_loop(device)


@contextlib.contextmanager
def sigterm_as_interrupt() -> Iterator[None]:
    """Turn SIGTERM into BuildInterrupted for the duration of the block.

    Signal handlers can only be installed from the main thread; elsewhere this
    is a no-op and the caller relies on normal exception unwinding.
    """

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, _frame):
        raise BuildInterrupted(f"Received signal {signum}")

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _mount_primary(image: Path, mount_dir: Path) -> str:
    device = attach_loop(image)
    try:
        run_cmd(["mount", "-t", "iso9660", "-o", "ro", device, str(mount_dir)])
    except BaseException:
        detach_loop(device)
        raise
    return device


def _mount_fallback(image: Path, mount_dir: Path) -> None:
    run_cmd(["mount", "-o", "loop,ro", str(image), str(mount_dir)])


@contextlib.contextmanager
def mount_session(artifact: ImageArtifact, mount_dir: Path) -> Iterator[Path]:
    """Mount a verified image read-only at mount_dir for the block's duration.

    Primary mechanism: explicit read-only loop device + iso9660 mount.
    Fallback: ``mount -o loop,ro``. The mount and loop device are released on
    every exit path, including KeyboardInterrupt and SIGTERM.
    """

    if not artifact.valid:
        raise PreconditionError(f"Refusing to mount unverified image {artifact.path}")

    mount_dir = Path(mount_dir)
    mount_dir.mkdir(parents=True, exist_ok=True)
    if os.path.ismount(mount_dir):
        raise MountError(f"Mount point already in use: {mount_dir}")

    device: Optional[str] = None
    with sigterm_as_interrupt():
        try:
            try:
                device = _mount_primary(artifact.path, mount_dir)
            except CommandError as primary:
                logger.warning(
                    "[%s] Loop mount of %s failed (%s); trying fallback",
                    artifact.arch,
                    artifact.path,
                    primary,
                )
                try:
                    _mount_fallback(artifact.path, mount_dir)
                except CommandError as e:
                    raise MountError(f"Unable to mount {artifact.path} at {mount_dir}: {e}") from e

            logger.info("[%s] Mounted %s at %s", artifact.arch, artifact.path, mount_dir)
            yield mount_dir
        finally:
            teardown(mount_dir, device)
