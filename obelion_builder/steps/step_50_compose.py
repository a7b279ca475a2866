from __future__ import annotations

import logging
import shutil

from ..errors import PreconditionError
from ..lib.compose import compose_image
from ..pipeline import BuildContext, Stage, TargetRun

logger = logging.getLogger(__name__)


class ComposeStep:
    step_id = "50_compose"
    stage = Stage.COMPOSING
    resumable = False

    def run(self, ctx: BuildContext, run: TargetRun) -> None:
        if run.tree is None:
            raise PreconditionError("No working tree to compose")

        run.output = compose_image(
            run.tree,
            profile=ctx.profile,
            volume_id=ctx.volume_id,
            output_path=ctx.output_path,
        )

        if ctx.clean_work:
            logger.info("[%s] Removing working tree %s", ctx.arch, run.tree.root)
            shutil.rmtree(run.tree.root)

    def resume(self, ctx: BuildContext, run: TargetRun) -> bool:
        return False
