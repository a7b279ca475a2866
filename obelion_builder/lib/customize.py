from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..errors import CustomizationError, PreconditionError
from ..models import BootProfile, CustomizationBundle, WorkingTree
from .bootloader import GRUB_MENU, ISOLINUX_MENU, render_grub_menu, render_isolinux_menu

logger = logging.getLogger(__name__)

MANIFEST_PATH = "packages.list"
BRANDING_DIR = "custom-branding"
PROVISIONING_SCRIPT = "post-install.sh"

STEPS = ("manifest", "branding", "provisioning", "boot_menu")

FileEntry = Tuple[str, bytes, Optional[int]]


def write_files(root: Path, files: Sequence[FileEntry]) -> None:
    """Write a group of files all-or-nothing.

    Every file is first written to a hidden temp sibling; only when all temps
    are in place are they renamed over their targets. On failure the temps
    are removed and no target is touched.
    """

    temps: List[Tuple[Path, Path]] = []
    try:
        for rel, data, mode in files:
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(f".{target.name}.tmp")
            tmp.write_bytes(data)
            if mode is not None:
                os.chmod(tmp, mode)
            temps.append((tmp, target))
        for tmp, target in temps:
            os.replace(tmp, target)
    except BaseException:
        for tmp, _ in temps:
            tmp.unlink(missing_ok=True)
        raise


def _manifest_files(bundle: CustomizationBundle) -> List[FileEntry]:
    return [(MANIFEST_PATH, bundle.manifest.render().encode("utf-8"), 0o644)]


def _branding_files(bundle: CustomizationBundle) -> List[FileEntry]:
    return [(f"{BRANDING_DIR}/{rel}", data, 0o644) for rel, data in bundle.branding]


def _prune_branding(root: Path, keep: Sequence[str]) -> int:
    """Remove branding files a previous bundle left in a reused tree."""
    branding = root / BRANDING_DIR
    if not branding.is_dir():
        return 0
    removed = 0
    for p in sorted(branding.rglob("*"), reverse=True):
        rel = p.relative_to(root).as_posix()
        if p.is_dir() and not p.is_symlink():
            if not any(p.iterdir()):
                p.rmdir()
        elif rel not in keep:
            p.unlink()
            removed += 1
    return removed


def _provisioning_files(bundle: CustomizationBundle) -> List[FileEntry]:
    return [(PROVISIONING_SCRIPT, bundle.provisioning_script, 0o755)]


def _boot_menu_files(bundle: CustomizationBundle, profile: BootProfile) -> List[FileEntry]:
    files: List[FileEntry] = [
        (
            ISOLINUX_MENU,
            render_isolinux_menu(bundle.boot_entries, default=bundle.default_entry).encode("utf-8"),
            0o644,
        )
    ]
    if profile.uefi:
        grub = render_grub_menu(bundle.boot_entries, default=bundle.default_entry, title=bundle.menu_title)
        files.append((GRUB_MENU, grub.encode("utf-8"), 0o644))
    return files


def apply_bundle(tree: WorkingTree, bundle: CustomizationBundle, *, profile: BootProfile) -> WorkingTree:
    """Overlay the bundle onto a staged tree, returning it marked customized."""

    if not tree.root.is_dir():
        raise PreconditionError(f"Working tree does not exist: {tree.root}")

    plan = {
        "manifest": lambda: _manifest_files(bundle),
        "branding": lambda: _branding_files(bundle),
        "provisioning": lambda: _provisioning_files(bundle),
        "boot_menu": lambda: _boot_menu_files(bundle, profile),
    }

    for step in STEPS:
        try:
            files = plan[step]()
            write_files(tree.root, files)
            if step == "branding":
                stale = _prune_branding(tree.root, [rel for rel, _, _ in files])
                if stale:
                    logger.info("[%s] Removed %d stale branding files", tree.arch, stale)
        except (OSError, ValueError) as e:
            raise CustomizationError(step, str(e)) from e
        logger.info("[%s] Customization step %s applied (%d files)", tree.arch, step, len(files))

    return dataclasses.replace(tree, customized=True)
