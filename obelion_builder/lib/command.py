from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# Exit statuses reported when the tool never produced one, as a shell would.
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


class CommandError(RuntimeError):
    """An external tool exited non-zero, timed out, or was not installed."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(self.describe())

    def describe(self) -> str:
        head = f"{self.argv[0] if self.argv else '?'} exited {self.returncode}: {format_argv(self.argv)}"
        tail = self.stderr.strip()
        return f"{head}\n{tail}" if tail else head


def _log_stream(label: str, text: str) -> None:
    for line in text.splitlines():
        if line.strip():
            logger.debug("%s %s", label, line)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    timeout: Optional[float] = None,
) -> CmdResult:
    """Run losetup, mount, xorriso and friends with their output in the build log.

    The command line goes to INFO, each line of output to DEBUG, and the exit
    status with elapsed time to DEBUG. ``env`` is layered over the current
    environment. A missing executable becomes returncode 127 and an expired
    ``timeout`` 124, so callers only ever deal with ``CommandError``.
    """
    argv_list = [str(a) for a in argv]
    logger.info("CMD %s", format_argv(argv_list))

    started = time.monotonic()
    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
            timeout=timeout,
        )
    except FileNotFoundError as e:
        result = CmdResult(argv=argv_list, returncode=EXIT_NOT_FOUND, stdout="", stderr=str(e))
    except subprocess.TimeoutExpired:
        result = CmdResult(argv=argv_list, returncode=EXIT_TIMEOUT, stdout="", stderr=f"timed out after {timeout}s")
    else:
        result = CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout or "", stderr=p.stderr or "")

    _log_stream("STDOUT", result.stdout)
    _log_stream("STDERR", result.stderr)
    logger.debug("EXIT %d after %.1fs: %s", result.returncode, time.monotonic() - started, argv_list[0])

    if check and not result.ok:
        raise CommandError(argv_list, result.returncode, result.stderr)
    return result
