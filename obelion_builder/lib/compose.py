from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import ComposeError, MissingBootAssetError, PreconditionError
from ..models import (
    EFI_CATALOG,
    EFI_IMG,
    ISOLINUX_BIN,
    ISOLINUX_CATALOG,
    BootProfile,
    WorkingTree,
)
from .command import CommandError, run_cmd
from .pkg import ISOHYBRID_MBR, acquire_boot_asset, ensure_host_file

logger = logging.getLogger(__name__)

MAX_VOLUME_ID = 32


def volume_id_for(distro_name: str) -> str:
    return f"{distro_name}_Linux"[:MAX_VOLUME_ID]


def output_name(distro_name: str, version: str, arch: str, ext: str = "iso") -> str:
    return f"{distro_name.lower()}-{version}-{arch}.{ext}"


def xorriso_argv(
    tree_root: Path,
    *,
    profile: BootProfile,
    volume_id: str,
    output: Path,
    legacy: bool,
    mbr: str,
    xorriso: str = "xorriso",
) -> List[str]:
    """Build the ``xorriso -as mkisofs`` command line for a boot profile."""

    argv = [xorriso, "-as", "mkisofs", "-r", "-V", volume_id, "-o", str(output)]
    if profile.joliet:
        argv += ["-J", "-joliet-long"]
    argv += ["-isohybrid-mbr", mbr]

    if legacy:
        argv += [
            "-b", ISOLINUX_BIN,
            "-c", ISOLINUX_CATALOG,
            "-no-emul-boot",
            "-boot-load-size", "4",
            "-boot-info-table",
        ]
    else:
        argv += ["-c", EFI_CATALOG]

    if profile.uefi:
        if legacy:
            argv.append("-eltorito-alt-boot")
        argv += ["-e", EFI_IMG, "-no-emul-boot", "-isohybrid-gpt-basdat"]

    if profile.gpt_apm:
        argv.append("-isohybrid-apm-hfsplus")

    argv.append(str(tree_root))
    return argv


def _ensure_boot_assets(tree: WorkingTree, profile: BootProfile, acquire: Callable[[str, Path], bool]) -> None:
    for rel in profile.required_boot_assets:
        if (tree.root / rel).exists():
            continue
        logger.warning("[%s] Boot asset %s missing from tree; trying host package source", tree.arch, rel)
        if not acquire(rel, tree.root) or not (tree.root / rel).exists():
            raise MissingBootAssetError(rel)


def compose_image(
    tree: WorkingTree,
    *,
    profile: BootProfile,
    volume_id: str,
    output_path: Path,
    xorriso: str = "xorriso",
    mbr: Optional[str] = None,
    acquire: Optional[Callable[[str, Path], bool]] = None,
    ensure_host: Optional[Callable[[str, str], bool]] = None,
) -> Path:
    """Repack a customized working tree into a bootable hybrid ISO.

    The image is written under a hidden ``.partial`` name next to the output
    and only renamed into place after it is confirmed non-empty, so a failed
    build never leaves a file at output_path.
    """

    if not tree.customized:
        raise PreconditionError(f"Working tree {tree.root} has not been customized")

    mbr = mbr or ISOHYBRID_MBR
    acquire = acquire or acquire_boot_asset
    ensure_host = ensure_host or ensure_host_file

    try:
        _ensure_boot_assets(tree, profile, acquire)
    except OSError as e:
        raise ComposeError(f"Unable to acquire boot assets: {e}") from e
    if not ensure_host(mbr, "isolinux"):
        raise MissingBootAssetError(mbr, f"Hybrid MBR template missing on host: {mbr}")

    # ARM images carry no BIOS loader unless the base image shipped one.
    legacy = profile.legacy_bios or (tree.root / ISOLINUX_BIN).exists()

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.exists():
        logger.info("[%s] Removing previous output %s", tree.arch, output_path)
        output_path.unlink()

    partial = output_path.with_name(f".{output_path.name}.partial")
    partial.unlink(missing_ok=True)

    argv = xorriso_argv(
        tree.root,
        profile=profile,
        volume_id=volume_id,
        output=partial,
        legacy=legacy,
        mbr=mbr,
        xorriso=xorriso,
    )

    try:
        run_cmd(argv)
        if not partial.exists() or partial.stat().st_size == 0:
            raise ComposeError(f"{xorriso} produced no image for {tree.arch}")
        os.replace(partial, output_path)
    except CommandError as e:
        raise ComposeError(f"Image build failed: {e}") from e
    except OSError as e:
        raise ComposeError(f"Unable to finalize {output_path}: {e}") from e
    finally:
        partial.unlink(missing_ok=True)

    logger.info("[%s] Composed %s (%d bytes)", tree.arch, output_path, output_path.stat().st_size)
    return output_path
