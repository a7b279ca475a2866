from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import List, Tuple

from ..errors import StageError
from ..models import BootProfile, WorkingTree

logger = logging.getLogger(__name__)


def _copy_entry(src: Path, dst: Path, *, preserve_owner: bool) -> bool:
    """Copy one non-directory entry. Returns False for skipped special files."""

    st = os.lstat(src)
    if stat.S_ISLNK(st.st_mode):
        os.symlink(os.readlink(src), dst)
    elif stat.S_ISREG(st.st_mode):
        shutil.copy2(src, dst, follow_symlinks=False)
    else:
        logger.warning("Skipping special file %s", src)
        return False

    if preserve_owner:
        os.lchown(dst, st.st_uid, st.st_gid)
    return True


def copy_tree(src: Path, dst: Path) -> int:
    """Copy src into a fresh dst preserving symlinks, modes, mtimes and ownership.

    Directory metadata is applied bottom-up after their contents are written,
    so read-only directories from the image do not block the copy.
    """

    preserve_owner = hasattr(os, "geteuid") and os.geteuid() == 0
    dirs: List[Tuple[Path, Path]] = [(src, dst)]
    copied = 0

    dst.mkdir(parents=True)
    for dirpath, dirnames, filenames in os.walk(src):
        here = Path(dirpath)
        out_dir = dst / here.relative_to(src)

        for name in list(dirnames):
            s = here / name
            d = out_dir / name
            if s.is_symlink():
                # os.walk lists symlinked directories but never descends into them.
                _copy_entry(s, d, preserve_owner=preserve_owner)
                copied += 1
                continue
            d.mkdir()
            dirs.append((s, d))

        for name in filenames:
            if _copy_entry(here / name, out_dir / name, preserve_owner=preserve_owner):
                copied += 1

    for s, d in reversed(dirs):
        shutil.copystat(s, d)
        if preserve_owner:
            st = os.stat(s)
            os.chown(d, st.st_uid, st.st_gid)

    return copied


def ensure_boot_assets(src: Path, dst: Path, profile: BootProfile) -> List[str]:
    """Copy any boot binaries the generic walk did not bring over."""

    restored: List[str] = []
    for rel in profile.required_boot_assets:
        s = src / rel
        d = dst / rel
        if d.exists() or not s.exists():
            continue
        d.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(s, d)
        shutil.copystat(s, d)
        restored.append(rel)
        logger.info("Restored boot asset %s", rel)
    return restored


def stage_tree(src: Path, dst: Path, *, arch: str, profile: BootProfile) -> WorkingTree:
    """Copy a mounted image tree into a fresh working directory."""

    src = Path(src)
    dst = Path(dst)
    if not src.is_dir():
        raise StageError(f"Source tree is not a directory: {src}")

    try:
        if dst.exists() or dst.is_symlink():
            logger.info("[%s] Removing previous working tree %s", arch, dst)
            shutil.rmtree(dst)
        count = copy_tree(src, dst)
        ensure_boot_assets(src, dst, profile)
    except (OSError, shutil.Error) as e:
        raise StageError(f"Copy of {src} -> {dst} failed: {e}") from e

    logger.info("[%s] Staged %d entries into %s", arch, count, dst)
    return WorkingTree(root=dst, arch=arch)
