from __future__ import annotations

import argparse
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .build_config import BuildConfig, load_build_config
from .build_state import BuildStateStore
from .errors import BuildError, ConfigError
from .lib.env import check_environment
from .lib.manifests import load_bundle
from .lib.mount import sigterm_as_interrupt
from .logging_utils import configure_logging
from .models import BuildReport, BuildResult, CustomizationBundle
from .pipeline import BuildContext, Stage, Step, run_target
from .steps import ComposeStep, CustomizeStep, ExtractStep, FetchStep, VerifyStep

logger = logging.getLogger(__name__)


DEFAULT_BUILD_CONFIG = "build_config.yaml"
DEFAULT_BUILD_STATE = "build/build_state.json"
DEFAULT_BUILD_LOG = "logs/obelion-build.log"


def build_steps() -> List[Step]:
    return [
        FetchStep(),
        VerifyStep(),
        ExtractStep(),
        CustomizeStep(),
        ComposeStep(),
    ]


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _context_for(
    cfg: BuildConfig,
    arch: str,
    *,
    work_dir: Path,
    bundle: CustomizationBundle,
    allow_download: bool,
    force: bool,
    clean_work: bool,
    cancel: threading.Event,
) -> BuildContext:
    return BuildContext(
        arch_cfg=cfg.arch(arch),
        work_dir=work_dir,
        distro_name=cfg.distro_name,
        distro_version=cfg.distro_version,
        bundle=bundle,
        allow_download=allow_download,
        force=force,
        clean_work=clean_work,
        download_timeout_s=cfg.download_timeout_s,
        cancel=cancel,
    )


def run_build(
    *,
    cfg: BuildConfig,
    state_path: str,
    arches: Optional[Sequence[str]] = None,
    work_dir: Optional[str] = None,
    skip_download: bool = False,
    force: bool = False,
    clean_work: bool = False,
    jobs: int = 1,
    preflight: bool = True,
    steps_factory: Callable[[], List[Step]] = build_steps,
) -> BuildReport:
    """Build every requested architecture and return one result per arch.

    A failing architecture never stops the others; only an interrupt does.
    """

    targets = _unique(list(arches) if arches else cfg.targets)
    if not targets:
        raise ConfigError("No build targets specified")

    root = Path(work_dir or cfg.work_dir).expanduser()
    bundle = load_bundle(cfg)
    store = BuildStateStore.open(state_path)
    cancel = threading.Event()

    report = BuildReport()
    contexts: List[BuildContext] = []
    for arch in targets:
        try:
            contexts.append(
                _context_for(
                    cfg,
                    arch,
                    work_dir=root,
                    bundle=bundle,
                    allow_download=not skip_download,
                    force=force,
                    clean_work=clean_work,
                    cancel=cancel,
                )
            )
        except ConfigError as e:
            logger.error("[%s] %s", arch, e)
            result = BuildResult(
                arch=arch,
                stage=Stage.FAILED.value,
                error=str(e),
                failed_stage=Stage.PENDING.value,
                error_type=type(e).__name__,
            )
            store.record_result(result)
            report.results.append(result)

    if preflight and contexts:
        check_environment(root, [c.arch_cfg.min_size for c in contexts])

    with sigterm_as_interrupt():
        if jobs <= 1 or len(contexts) <= 1:
            for ctx in contexts:
                report.results.append(run_target(ctx, steps_factory(), store))
        else:
            with ThreadPoolExecutor(max_workers=jobs) as pool:
                futures = [pool.submit(run_target, ctx, steps_factory(), store) for ctx in contexts]
                try:
                    report.results.extend(f.result() for f in futures)
                except BaseException:
                    cancel.set()
                    for f in futures:
                        f.cancel()
                    raise

    # Keep results in the order the architectures were requested.
    order = {a: i for i, a in enumerate(targets)}
    report.results.sort(key=lambda r: order.get(r.arch, len(order)))
    return report


def _log_level(args: argparse.Namespace) -> int:
    if args.verbose:
        return logging.DEBUG
    if args.quiet:
        return logging.WARNING
    return logging.INFO


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="obelion-build", description="Remaster base ISOs into Obelion images")
    p.add_argument("--config", default=DEFAULT_BUILD_CONFIG)
    p.add_argument("--state", default=DEFAULT_BUILD_STATE)
    p.add_argument("--log", default=DEFAULT_BUILD_LOG)
    p.add_argument(
        "--arch",
        action="append",
        default=None,
        help="Architecture to build (repeatable; default: all configured)",
    )
    p.add_argument("--work-dir", default=None, help="Override paths.work_dir from the config")
    p.add_argument("--skip-download", action="store_true", help="Use cached base images only")
    p.add_argument("--force", action="store_true", help="Re-stage even if a staged tree exists")
    p.add_argument("--clean-work", action="store_true", help="Remove working trees after success")
    p.add_argument("--jobs", type=int, default=1, help="Architectures to build in parallel")
    p.add_argument("--skip-preflight", action="store_true", help="Do not check host tools/disk space")
    p.add_argument("--check-env", action="store_true", help="Only run the environment check")
    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true")
    verbosity.add_argument("-q", "--quiet", action="store_true")

    args = p.parse_args(argv)

    configure_logging(log_path=args.log, level=_log_level(args))

    try:
        cfg = load_build_config(args.config)
        if args.check_env:
            arches = args.arch or cfg.targets
            check_environment(
                Path(args.work_dir or cfg.work_dir).expanduser(),
                [cfg.arch(a).min_size for a in arches],
            )
            print("Environment OK")
            return 0

        report = run_build(
            cfg=cfg,
            state_path=args.state,
            arches=args.arch,
            work_dir=args.work_dir,
            skip_download=bool(args.skip_download),
            force=bool(args.force),
            clean_work=bool(args.clean_work),
            jobs=max(1, int(args.jobs)),
            preflight=not args.skip_preflight,
        )
    except KeyboardInterrupt:
        logger.error("Build interrupted")
        return 130
    except (BuildError, ValueError, OSError) as e:
        logger.error("Build aborted: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 2

    for line in report.summary_lines():
        print(line)
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
