from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Sequence

from ..errors import EnvironmentCheckError

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("xorriso", "losetup", "mount", "umount")
SPACE_FACTOR = 2


def _existing_parent(path: Path) -> Path:
    p = path.resolve()
    while not p.exists() and p != p.parent:
        p = p.parent
    return p


def check_environment(
    work_dir: Path,
    image_sizes: Iterable[int],
    *,
    tools: Sequence[str] = REQUIRED_TOOLS,
) -> None:
    """Fail early if host tools or working disk space are missing.

    Each architecture needs room for its cached image plus the staged copy,
    so at least twice the largest expected base image must be free.
    """

    problems: List[str] = []

    for tool in tools:
        if shutil.which(tool) is None:
            problems.append(f"required tool not found on PATH: {tool}")

    sizes = list(image_sizes)
    if sizes:
        required = SPACE_FACTOR * max(sizes)
        free = shutil.disk_usage(_existing_parent(Path(work_dir))).free
        if free < required:
            problems.append(
                f"insufficient free space in {work_dir}: {free / 2**30:.2f} GiB available, "
                f"{required / 2**30:.2f} GiB required"
            )

    if problems:
        raise EnvironmentCheckError(problems)
    logger.info("Environment check passed (work_dir=%s)", work_dir)
