from __future__ import annotations

import logging

from ..errors import PreconditionError
from ..lib.mount import mount_session
from ..lib.stage import stage_tree
from ..models import WorkingTree
from ..pipeline import BuildContext, Stage, TargetRun

logger = logging.getLogger(__name__)


class ExtractStep:
    """Mount the verified base image and copy its tree into the working dir."""

    step_id = "30_extract"
    stage = Stage.MOUNTING
    resumable = True

    def run(self, ctx: BuildContext, run: TargetRun) -> None:
        if run.artifact is None or not run.artifact.valid:
            raise PreconditionError("Base image has not been verified")

        with mount_session(run.artifact, ctx.mount_dir) as root:
            run.advance(Stage.STAGING)
            run.tree = stage_tree(root, ctx.tree_dir, arch=ctx.arch, profile=ctx.profile)

    def resume(self, ctx: BuildContext, run: TargetRun) -> bool:
        if not ctx.tree_dir.is_dir():
            return False
        run.advance(Stage.STAGING)
        run.tree = WorkingTree(root=ctx.tree_dir, arch=ctx.arch)
        logger.info("[%s] Reusing staged tree %s", ctx.arch, ctx.tree_dir)
        return True
