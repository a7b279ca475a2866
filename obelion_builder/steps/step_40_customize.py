from __future__ import annotations

from ..errors import PreconditionError
from ..lib.customize import apply_bundle
from ..pipeline import BuildContext, Stage, TargetRun


class CustomizeStep:
    step_id = "40_customize"
    stage = Stage.CUSTOMIZING
    resumable = False

    def run(self, ctx: BuildContext, run: TargetRun) -> None:
        if run.tree is None:
            raise PreconditionError("No staged working tree to customize")
        run.tree = apply_bundle(run.tree, ctx.bundle, profile=ctx.profile)

    def resume(self, ctx: BuildContext, run: TargetRun) -> bool:
        return False
