from __future__ import annotations

from ..errors import PreconditionError
from ..lib.verify import verify_image
from ..pipeline import BuildContext, Stage, TargetRun


class VerifyStep:
    step_id = "20_verify"
    stage = Stage.VERIFYING
    resumable = False

    def run(self, ctx: BuildContext, run: TargetRun) -> None:
        if run.artifact is None:
            raise PreconditionError("No fetched image to verify")
        run.artifact = verify_image(run.artifact)

    def resume(self, ctx: BuildContext, run: TargetRun) -> bool:
        return False
