from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence

from .build_config import ArchConfig
from .build_state import BuildStateStore
from .errors import BuildError, BuildInterrupted
from .lib.compose import output_name, volume_id_for
from .models import BootProfile, BuildResult, CustomizationBundle, ImageArtifact, WorkingTree

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    MOUNTING = "mounting"
    STAGING = "staging"
    CUSTOMIZING = "customizing"
    COMPOSING = "composing"
    DONE = "done"
    FAILED = "failed"


_ORDER = list(Stage)


@dataclass(frozen=True)
class BuildContext:
    """Everything one architecture's pipeline needs, with resolved paths."""

    arch_cfg: ArchConfig
    work_dir: Path
    distro_name: str
    distro_version: str
    bundle: CustomizationBundle
    allow_download: bool = True
    force: bool = False
    clean_work: bool = False
    download_timeout_s: float = 60.0
    cancel: Optional[threading.Event] = None

    @property
    def arch(self) -> str:
        return self.arch_cfg.arch

    @property
    def profile(self) -> BootProfile:
        return self.arch_cfg.boot_profile

    @property
    def iso_path(self) -> Path:
        return self.work_dir / "iso" / self.arch_cfg.cache_name

    @property
    def mount_dir(self) -> Path:
        return self.work_dir / "mnt" / self.arch

    @property
    def tree_dir(self) -> Path:
        return self.work_dir / f"custom-{self.arch}"

    @property
    def output_path(self) -> Path:
        return self.work_dir / "output" / output_name(self.distro_name, self.distro_version, self.arch)

    @property
    def volume_id(self) -> str:
        return volume_id_for(self.distro_name)


@dataclass
class TargetRun:
    """Mutable progress of one architecture through the state machine."""

    arch: str
    stage: Stage = Stage.PENDING
    artifact: Optional[ImageArtifact] = None
    tree: Optional[WorkingTree] = None
    output: Optional[Path] = None
    refetched: bool = False
    history: list = field(default_factory=list)

    def advance(self, stage: Stage) -> None:
        if _ORDER.index(stage) < _ORDER.index(self.stage):
            raise RuntimeError(f"Illegal transition {self.stage.value} -> {stage.value}")
        if stage is not self.stage:
            logger.debug("[%s] %s -> %s", self.arch, self.stage.value, stage.value)
            self.history.append(stage)
            self.stage = stage


class Step(Protocol):
    """A single idempotent step."""

    step_id: str
    stage: Stage
    resumable: bool

    def run(self, ctx: BuildContext, run: TargetRun) -> None:
        ...

    def resume(self, ctx: BuildContext, run: TargetRun) -> bool:
        ...


def run_target(ctx: BuildContext, steps: Sequence[Step], store: BuildStateStore) -> BuildResult:
    """Run one architecture's steps in order, capturing failure as a result.

    BuildInterrupted/KeyboardInterrupt are not captured: they end the build.
    """

    run = TargetRun(arch=ctx.arch)
    logger.info("=== Build target: %s (%s) ===", ctx.arch, ctx.profile.value)

    try:
        for step in steps:
            if ctx.cancel is not None and ctx.cancel.is_set():
                raise BuildInterrupted(f"Build cancelled before {step.step_id}")

            run.advance(step.stage)

            if (
                step.resumable
                and not ctx.force
                and not run.refetched
                and store.is_completed(target=ctx.arch, step_id=step.step_id)
                and step.resume(ctx, run)
            ):
                logger.info("[%s] skip %s (already completed)", ctx.arch, step.step_id)
                continue

            logger.info("[%s] run %s", ctx.arch, step.step_id)
            if step.resumable:
                # Only a run that finishes may be resumed later.
                store.unmark_completed(target=ctx.arch, step_id=step.step_id)
            step.run(ctx, run)
            if run.refetched and step.stage is Stage.FETCHING:
                store.reset_target(target=ctx.arch)
            store.mark_completed(target=ctx.arch, step_id=step.step_id)
    except Exception as e:
        failed_stage = run.stage
        run.advance(Stage.FAILED)
        if isinstance(e, BuildError):
            logger.error("[%s] failed during %s: %s", ctx.arch, failed_stage.value, e)
        else:
            logger.exception("[%s] unexpected failure during %s", ctx.arch, failed_stage.value)
        result = BuildResult(
            arch=ctx.arch,
            stage=Stage.FAILED.value,
            error=str(e),
            failed_stage=failed_stage.value,
            error_type=type(e).__name__,
        )
    else:
        run.advance(Stage.DONE)
        result = BuildResult(arch=ctx.arch, stage=Stage.DONE.value, output=run.output)

    store.record_result(result)
    return result
