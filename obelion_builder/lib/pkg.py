from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Dict, Sequence, Tuple

from .command import CommandError, run_cmd

logger = logging.getLogger(__name__)

ISOHYBRID_MBR = "/usr/lib/ISOLINUX/isohdpfx.bin"

# Tree-relative boot asset -> (host package, file it installs on the host).
# The EFI El Torito image is built per-release and has no host package source.
HOST_BOOT_ASSETS: Dict[str, Tuple[str, str]] = {
    "isolinux/isolinux.bin": ("isolinux", "/usr/lib/ISOLINUX/isolinux.bin"),
    "isolinux/ldlinux.c32": ("syslinux-common", "/usr/lib/syslinux/modules/bios/ldlinux.c32"),
}


def host_apt_install(packages: Sequence[str]) -> bool:
    """Install packages on the build host. Returns False if apt failed."""

    if not packages:
        return True
    try:
        run_cmd(
            ["apt-get", "install", "-y", "--no-install-recommends", *packages],
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )
    except CommandError as e:
        logger.error("Host package install failed for %s: %s", ", ".join(packages), e)
        return False
    return True


def ensure_host_file(path: str, package: str) -> bool:
    """Make sure a file shipped by a host package exists, installing it if needed."""

    if Path(path).exists():
        return True
    logger.info("Host file %s missing; installing %s", path, package)
    return host_apt_install([package]) and Path(path).exists()


def acquire_boot_asset(rel_path: str, tree_root: Path) -> bool:
    """Copy a missing boot binary from the host's package source into the tree."""

    source = HOST_BOOT_ASSETS.get(rel_path)
    if source is None:
        logger.warning("No host package provides boot asset %s", rel_path)
        return False

    package, host_path = source
    if not ensure_host_file(host_path, package):
        return False

    dst = Path(tree_root) / rel_path
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(host_path, dst)
    logger.info("Acquired boot asset %s from host package %s", rel_path, package)
    return True
