from __future__ import annotations

import logging

from ..lib.fetch import fetch_image
from ..pipeline import BuildContext, Stage, TargetRun

logger = logging.getLogger(__name__)


class FetchStep:
    step_id = "10_fetch"
    stage = Stage.FETCHING
    resumable = False

    def run(self, ctx: BuildContext, run: TargetRun) -> None:
        had_cache = ctx.iso_path.exists() and ctx.iso_path.stat().st_size > 0

        run.artifact = fetch_image(
            ctx.arch_cfg.url,
            ctx.iso_path,
            arch=ctx.arch,
            min_size=ctx.arch_cfg.min_size,
            allow_download=ctx.allow_download,
            timeout=ctx.download_timeout_s,
        )
        # A new base image invalidates any previously staged tree.
        run.refetched = not had_cache

    def resume(self, ctx: BuildContext, run: TargetRun) -> bool:
        return False
